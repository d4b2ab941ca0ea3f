"""Bill analysis endpoints."""

import json
import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

from munipal.pipeline.knowledge_store import InMemoryTariffStore
from munipal.pipeline.loader import BillContractError, bill_from_dict
from munipal.pipeline.models import ParsedBill, ServiceType
from munipal.pipeline.orchestrator import AnalysisResult, run_analysis
from munipal.reports.generator import RULE, render_dispute_letter, render_text_report

router = APIRouter()
logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    # Accept the parser's camelCase as well as snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Types only; whole-cent and date checks belong to loader.bill_from_dict
Number = Union[StrictInt, StrictFloat]
DateText = Optional[StrictStr]


class PropertyInfoPayload(_Payload):
    address: Optional[StrictStr] = None
    stand_size: Optional[Number] = None
    units: Optional[Number] = None
    property_type: Optional[StrictStr] = None
    municipal_valuation: Optional[Number] = None


class LineItemPayload(_Payload):
    service_type: ServiceType
    amount: Number
    description: StrictStr = ""
    quantity: Optional[Number] = None
    unit_price: Optional[Number] = None
    tariff_code: Optional[StrictStr] = None
    is_estimated: bool = False
    metadata: Optional[dict[str, Any]] = None


class BillPayload(_Payload):
    line_items: list[LineItemPayload] = []
    raw_text: StrictStr = ""
    account_number: Optional[Union[StrictStr, StrictInt]] = None
    bill_date: DateText = None
    due_date: DateText = None
    period_start: DateText = None
    period_end: DateText = None
    billing_days: Optional[Number] = None
    total_due: Optional[Number] = None
    previous_balance: Optional[Number] = None
    current_charges: Optional[Number] = None
    vat_amount: Optional[Number] = None
    property_info: Optional[PropertyInfoPayload] = None


class AnalyzeRequest(_Payload):
    bill: BillPayload
    # Inline rules replace the server's knowledge base for this request
    tariff_rules: Optional[list[dict[str, Any]]] = None


def _safe_json_response(data: dict, status_code: int = 200) -> JSONResponse:
    """JSONResponse with ``default=str`` for anything the projection missed."""
    content = json.loads(json.dumps(data, default=str, ensure_ascii=False))
    return JSONResponse(content=content, status_code=status_code)


def _to_bill(payload: BillPayload) -> ParsedBill:
    try:
        return bill_from_dict(payload.model_dump(mode="json", exclude_none=True))
    except BillContractError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _analyze(request: AnalyzeRequest, http_request: Request) -> AnalysisResult:
    bill = _to_bill(request.bill)
    if request.tariff_rules is not None:
        store = InMemoryTariffStore.from_dicts(request.tariff_rules)
    else:
        store = getattr(http_request.app.state, "tariff_store", None)
        if store is None:
            store = InMemoryTariffStore()
    logger.info(f"Analyzing bill {bill.account_number or '?'} "
                f"({len(bill.line_items)} line items, {len(store)} tariff rules)")
    return run_analysis(bill, store)


@router.post("")
async def analyze(request: AnalyzeRequest, http_request: Request):
    """Analyze a parsed bill: insights, charge verification, summaries and action plans."""
    result = _analyze(request, http_request)
    return _safe_json_response(result.to_dict())


@router.post("/report", response_class=PlainTextResponse)
async def analyze_report(request: AnalyzeRequest, http_request: Request):
    """Same analysis, rendered as the plain-text report."""
    result = _analyze(request, http_request)
    return PlainTextResponse(render_text_report(result.analysis, result.verification,
                                                list(result.action_plans)))


@router.post("/letters", response_class=PlainTextResponse)
async def analyze_letters(request: AnalyzeRequest, http_request: Request):
    """Every letter the action plans call for, ready to send; empty when none."""
    result = _analyze(request, http_request)
    letters = [render_dispute_letter(p.dispute_letter)
               for p in result.action_plans if p.dispute_letter is not None]
    return PlainTextResponse(f"\n{RULE}\n\n".join(letters))
