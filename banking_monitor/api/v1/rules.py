"""POST /v1/rules/preview - dry-run a rule definition"""

from fastapi import APIRouter, Depends

from banking_monitor.api.dependencies import get_tenant_id
from banking_monitor.api.v1.schemas import RulePreviewMatch, RulePreviewRequest, RulePreviewResponse
from banking_monitor.domain.rules import evaluate_rule

router = APIRouter()


@router.post("/rules/preview", response_model=RulePreviewResponse)
def preview_rule(request_body: RulePreviewRequest, tenant_id: str = Depends(get_tenant_id)):
    """Evaluate a rule against the supplied transactions without storing anything"""
    rule = request_body.rule.to_domain(tenant_id)
    matches = [
        RulePreviewMatch(external_id=tx.external_id, matched=evaluate_rule(rule, tx.to_domain()))
        for tx in request_body.transactions
    ]
    return RulePreviewResponse(matches=matches, matched_count=sum(1 for m in matches if m.matched))
