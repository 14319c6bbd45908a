from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel

from ..models import (
    AdmitRequest,
    BiodataRequest,
    ContinuingRequest,
    EmptyRequest,
    ListLearnersRequest,
    PlacementRequest,
    SearchLearnerRequest,
    TransferRequest,
)
from .selectors import PATHS, SELECTORS


class OperationKind(str, Enum):
    LOGIN = "login"
    LIST_LEARNERS = "list_learners"
    LIST_ADMITTED = "list_admitted"
    LIST_SELECTED = "list_selected"
    LIST_REQUESTED = "list_requested"
    LIST_APPROVED = "list_approved"
    LIST_CONTINUING_REQUESTS = "list_continuing_requests"
    LIST_PENDING_CONTINUING = "list_pending_continuing"
    SEARCH_LEARNER = "search_learner"
    GET_INSTITUTION = "get_institution"
    REQUEST_PLACEMENT = "request_placement"
    ADMIT = "admit"
    CAPTURE_BIODATA = "capture_biodata"
    TRANSFER = "transfer"
    REQUEST_CONTINUING = "request_continuing"


@dataclass(frozen=True)
class PageSizeChange:
    """
    The postback that switches a grid to one big page.

    `ajax` postbacks go through the script manager with `trigger` as the source control;
    `extra` fields are posted alongside SelectRecs (the category selects on some pages).
    """

    ajax: bool = False
    trigger: str = SELECTORS.records_per_page
    extra: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OperationSpec:
    kind: OperationKind
    anchor: str
    request_model: type[BaseModel] = EmptyRequest
    writes: bool = False
    page_size: Optional[PageSizeChange] = None

    @property
    def name(self) -> str:
        return self.kind.value


_FULL_PAGE_SIZE = PageSizeChange()

OPERATIONS: Mapping[OperationKind, OperationSpec] = {
    s.kind: s
    for s in (
        OperationSpec(OperationKind.LOGIN, PATHS.home),
        OperationSpec(
            OperationKind.LIST_LEARNERS,
            PATHS.list_learners,
            ListLearnersRequest,
            # SelectCat is filled in per request from the grade.
            page_size=PageSizeChange(
                ajax=True,
                trigger=SELECTORS.category,
                extra={SELECTORS.birth_certificate_filter: "1", SELECTORS.category_secondary: "9 "},
            ),
        ),
        OperationSpec(OperationKind.LIST_ADMITTED, PATHS.list_admitted, page_size=_FULL_PAGE_SIZE),
        OperationSpec(
            OperationKind.LIST_SELECTED,
            PATHS.list_selected,
            page_size=PageSizeChange(ajax=True, extra={SELECTORS.category: "2"}),
        ),
        OperationSpec(OperationKind.LIST_REQUESTED, PATHS.list_requested, page_size=_FULL_PAGE_SIZE),
        OperationSpec(OperationKind.LIST_APPROVED, PATHS.list_approved, page_size=_FULL_PAGE_SIZE),
        OperationSpec(OperationKind.LIST_CONTINUING_REQUESTS, PATHS.list_continuing_requests, page_size=_FULL_PAGE_SIZE),
        OperationSpec(OperationKind.LIST_PENDING_CONTINUING, PATHS.list_pending_continuing, page_size=_FULL_PAGE_SIZE),
        OperationSpec(OperationKind.SEARCH_LEARNER, PATHS.search_learner_api, SearchLearnerRequest),
        OperationSpec(OperationKind.GET_INSTITUTION, PATHS.institution),
        OperationSpec(OperationKind.REQUEST_PLACEMENT, PATHS.student_index, PlacementRequest, writes=True),
        OperationSpec(OperationKind.ADMIT, PATHS.student_index, AdmitRequest, writes=True),
        OperationSpec(OperationKind.CAPTURE_BIODATA, PATHS.capture_biodata, BiodataRequest, writes=True),
        OperationSpec(OperationKind.TRANSFER, PATHS.transfer_receive, TransferRequest, writes=True),
        OperationSpec(OperationKind.REQUEST_CONTINUING, PATHS.list_continuing_requests, ContinuingRequest, writes=True),
    )
}
