from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from ..config import AppConfig
from ..errors import (
    AuthenticationError,
    BusinessError,
    ExtractionError,
    PortalError,
    ProtocolError,
    SessionExpiredError,
    UnknownError,
    snippet,
)
from ..models import (
    ActionResult,
    AdmitRequest,
    AdmittedLearner,
    BiodataRequest,
    CaptureResult,
    ContinuingLearner,
    ContinuingRequest,
    Institution,
    ListedLearner,
    ListLearnersRequest,
    PlacementRecord,
    PlacementRequest,
    SearchLearnerRequest,
    SearchResult,
    SelectedLearner,
    TransferRequest,
)
from ..outcome import Failure, Outcome, Success
from ..util.codes import grade_code, medical_condition_code, nationality_code
from ..util.dates import format_postback_date
from ..util.debug_bundle import save_debug_html
from ..util.names import split_names
from . import phrases as P
from .fields import element_text, flag_enabled, input_value, selected_option, soup_of
from .operations import OPERATIONS, OperationKind, OperationSpec
from .phrases import DEFAULT_PHRASES, OperationPhrases, PhraseCatalog
from .selectors import PATHS, SELECTORS, element_id, field
from .session import ASYNCPOST, EVENTARGUMENT, EVENTTARGET, PortalCredentials, Session
from .tables import AnchorRule, TableRow, extract, find_table, needs_page_size_change, page_scope
from .transport import HeaderProfile, RawResponse, SessionTransport
from .viewstate import absorb, mark_stale


logger = logging.getLogger(__name__)

RequestLike = Union[BaseModel, Mapping[str, Any], None]
Handler = Callable[[Session, Any], Awaitable[Any]]

_UPDATE_PANEL_MARKER = "updatePanel|" + SELECTORS.update_panel_id
_ADD_WITH_BC = "[ ADD NEW STUDENT (WITH BC)]"


class PortalClient:
    """
    Runs catalog operations against the portal for one or many sessions.

    Every operation goes through `run()`: the request is validated before any traffic,
    the session's lock is held for the whole exchange, a portal-side session expiry is
    recovered by one in-place re-login and one replay from the anchor page, and every
    PortalError becomes a `Failure`. Other exceptions (bugs) propagate.
    """

    def __init__(
        self,
        transport: SessionTransport,
        *,
        records_per_page: str = "10000",
        phrases: Optional[PhraseCatalog] = None,
        logger: Optional[logging.Logger] = None,
        debug_dir: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.records_per_page = str(records_per_page)
        self.phrases = phrases or DEFAULT_PHRASES
        self.debug_dir = debug_dir
        self._logger = logger or logging.getLogger(__name__)
        self._handlers: dict[OperationKind, Handler] = {
            OperationKind.LOGIN: self._login,
            OperationKind.LIST_LEARNERS: self._list_learners,
            OperationKind.LIST_ADMITTED: self._list_admitted,
            OperationKind.LIST_SELECTED: self._list_selected,
            OperationKind.LIST_REQUESTED: self._list_requested,
            OperationKind.LIST_APPROVED: self._list_approved,
            OperationKind.LIST_CONTINUING_REQUESTS: self._list_continuing_requests,
            OperationKind.LIST_PENDING_CONTINUING: self._list_pending_continuing,
            OperationKind.SEARCH_LEARNER: self._search_learner,
            OperationKind.GET_INSTITUTION: self._get_institution,
            OperationKind.REQUEST_PLACEMENT: self._request_placement,
            OperationKind.ADMIT: self._admit,
            OperationKind.CAPTURE_BIODATA: self._capture_biodata,
            OperationKind.TRANSFER: self._transfer,
            OperationKind.REQUEST_CONTINUING: self._request_continuing,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls, config: AppConfig, *, http_transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "PortalClient":
        transport = SessionTransport(
            base_url=config.portal.base_url,
            timeout_s=config.portal.timeout_s,
            session_ttl_s=config.portal.session_ttl_s,
            http_transport=http_transport,
        )
        return cls(
            transport,
            records_per_page=config.portal.records_per_page,
            phrases=DEFAULT_PHRASES.with_overrides(config.phrases.operations),
            debug_dir=config.portal.debug_dir,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @staticmethod
    def new_session(username: str, password: str, *, institution: str = "") -> Session:
        return Session(credentials=PortalCredentials(username=username, password=password), institution=institution)

    async def run(self, session: Session, kind: OperationKind, request: RequestLike = None) -> Outcome:
        """
        Run one operation. Invalid input raises pydantic.ValidationError before any network call.
        """
        spec = OPERATIONS[kind]
        req = self._validate(spec, request)
        async with session.lock:
            return await self._run_locked(session, spec, req)

    async def login(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LOGIN)

    async def list_learners(self, session: Session, grade: str) -> Outcome:
        return await self.run(session, OperationKind.LIST_LEARNERS, {"grade": grade})

    async def list_admitted(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_ADMITTED)

    async def list_selected(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_SELECTED)

    async def list_requested(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_REQUESTED)

    async def list_approved(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_APPROVED)

    async def list_continuing_requests(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_CONTINUING_REQUESTS)

    async def list_pending_continuing(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.LIST_PENDING_CONTINUING)

    async def search_learner(self, session: Session, identifier: str) -> Outcome:
        return await self.run(session, OperationKind.SEARCH_LEARNER, {"identifier": identifier})

    async def get_institution(self, session: Session) -> Outcome:
        return await self.run(session, OperationKind.GET_INSTITUTION)

    async def request_placement(self, session: Session, request: RequestLike) -> Outcome:
        return await self.run(session, OperationKind.REQUEST_PLACEMENT, request)

    async def admit(self, session: Session, request: RequestLike) -> Outcome:
        return await self.run(session, OperationKind.ADMIT, request)

    async def capture_biodata(self, session: Session, request: RequestLike) -> Outcome:
        return await self.run(session, OperationKind.CAPTURE_BIODATA, request)

    async def transfer(self, session: Session, request: RequestLike) -> Outcome:
        return await self.run(session, OperationKind.TRANSFER, request)

    async def request_continuing(self, session: Session, request: RequestLike) -> Outcome:
        return await self.run(session, OperationKind.REQUEST_CONTINUING, request)

    # ------------------------------------------------------------------
    # Core loop
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(spec: OperationSpec, request: RequestLike) -> BaseModel:
        if isinstance(request, spec.request_model):
            return request
        if isinstance(request, BaseModel):
            request = request.model_dump()
        return spec.request_model.model_validate(request or {})

    async def _run_locked(self, session: Session, spec: OperationSpec, req: BaseModel) -> Outcome:
        handler = self._handlers[spec.kind]
        self._logger.info("Running %s account=%s", spec.name, session.identity)
        relogged = False
        try:
            if spec.kind is not OperationKind.LOGIN and (not session.authenticated or session.is_expired()):
                self._logger.info("Session not logged in or past its lifetime; logging in account=%s", session.identity)
                await self.transport.login(session.credentials, session=session)

            while True:
                try:
                    data = await handler(session, req)
                    break
                except SessionExpiredError as e:
                    if relogged:
                        raise AuthenticationError(
                            "Portal session expired again right after re-login.", raw_snippet=e.raw_snippet
                        ) from e
                    relogged = True
                    self._logger.warning(
                        "Portal session expired during %s; re-logging in and replaying once account=%s",
                        spec.name,
                        session.identity,
                    )
                    await self.transport.login(session.credentials, session=session)
        except PortalError as e:
            self._logger.warning(
                "%s failed account=%s kind=%s message=%s", spec.name, session.identity, e.kind.value, e.message
            )
            return Failure.from_error(e)

        self._logger.info("%s succeeded account=%s", spec.name, session.identity)
        return Success(data)

    # ------------------------------------------------------------------
    # Round-trip helpers
    # ------------------------------------------------------------------

    def _phrases(self, kind: OperationKind) -> OperationPhrases:
        return self.phrases.for_operation(kind.value)

    async def _get(self, session: Session, path: str) -> RawResponse:
        raw = await self.transport.send(session, path)
        self._absorb(session, raw)
        return raw

    async def _post(
        self,
        session: Session,
        path: str,
        fields: Mapping[str, Any],
        *,
        profile: HeaderProfile = HeaderProfile.FULL_PAGE,
        event_target: str = "",
        event_argument: str = "",
        trigger: Optional[str] = None,
        multipart: bool = False,
    ) -> RawResponse:
        """
        Postback on the current page state. `trigger` makes it an AJAX partial postback
        through the script manager (source control = trigger).
        """
        form = session.view_state.form_fields()
        form[EVENTTARGET] = event_target
        form[EVENTARGUMENT] = event_argument
        if trigger:
            form[ASYNCPOST] = "true"
            form[SELECTORS.script_manager] = f"{SELECTORS.update_panel}|{trigger}"
        form.update(fields)
        raw = await self.transport.send(session, path, method="POST", fields=form, profile=profile, multipart=multipart)
        self._absorb(session, raw)
        return raw

    @staticmethod
    def _absorb(session: Session, raw: RawResponse) -> None:
        if raw.redirect_target:
            mark_stale(session)
            return
        absorb(session, raw.body)

    def _unknown(self, kind: OperationKind, session: Session, message: str, body: str) -> UnknownError:
        path = save_debug_html(self.debug_dir, f"{kind.value}_{session.identity}", body)
        if path is not None:
            self._logger.info("Saved unrecognized portal response to %s", path)
        return UnknownError(message, raw_snippet=snippet(body) or "")

    async def _grid_page(
        self,
        session: Session,
        spec: OperationSpec,
        *,
        category: Optional[str] = None,
        extra: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        GET the listing page; when the grid is paged (or shows another category) switch it
        to a single big page with one postback and fetch it again.
        """
        raw = await self._get(session, spec.anchor)
        scope = page_scope(raw.body)
        if not needs_page_size_change(scope, category):
            return raw.body

        change = spec.page_size
        if change is None:
            raise ProtocolError(f"Grid on {spec.anchor} needs reconciling but has no page-size postback.")
        fields: dict[str, Any] = dict(change.extra)
        fields.update(extra or {})
        fields[SELECTORS.records_per_page] = self.records_per_page
        self._logger.debug("Changing page size on %s (paged=%s)", spec.anchor, scope.paged)
        await self._post(
            session,
            spec.anchor,
            fields,
            profile=HeaderProfile.AJAX if change.ajax else HeaderProfile.FULL_PAGE,
            event_target=SELECTORS.records_per_page,
            trigger=change.trigger if change.ajax else None,
        )
        raw = await self._get(session, spec.anchor)
        return raw.body

    @staticmethod
    def _grid_rows(body: str, *, anchor: Optional[AnchorRule] = None) -> list[TableRow]:
        fragment = find_table(body, SELECTORS.grid_id)
        if fragment is None:
            return []
        return extract(fragment, anchor=anchor)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _login(self, session: Session, req: BaseModel) -> dict[str, str]:
        await self.transport.login(session.credentials, session=session)
        return {"account": session.identity}

    async def _list_learners(self, session: Session, req: ListLearnersRequest) -> list[ListedLearner]:
        spec = OPERATIONS[OperationKind.LIST_LEARNERS]
        body = await self._grid_page(
            session,
            spec,
            category=req.grade,
            extra={SELECTORS.category: str(grade_code(req.grade))},
        )
        rows = self._grid_rows(body, anchor=AnchorRule())
        return [ListedLearner.from_row(r, grade=req.grade) for r in rows]

    async def _list_admitted(self, session: Session, req: BaseModel) -> list[AdmittedLearner]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_ADMITTED])
        return [AdmittedLearner.from_row(r) for r in self._grid_rows(body)]

    async def _list_selected(self, session: Session, req: BaseModel) -> list[SelectedLearner]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_SELECTED], category="2")
        return [SelectedLearner.from_row(r) for r in self._grid_rows(body)]

    async def _list_requested(self, session: Session, req: BaseModel) -> list[PlacementRecord]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_REQUESTED])
        records = [PlacementRecord.from_row(r) for r in self._grid_rows(body)]
        return [r for r in records if r.index_no]

    async def _list_approved(self, session: Session, req: BaseModel) -> list[PlacementRecord]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_APPROVED])
        records = [PlacementRecord.from_row(r) for r in self._grid_rows(body)]
        return [r for r in records if r.index_no]

    async def _list_continuing_requests(self, session: Session, req: BaseModel) -> list[ContinuingLearner]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_CONTINUING_REQUESTS])
        return [ContinuingLearner.from_row(r) for r in self._grid_rows(body)]

    async def _list_pending_continuing(self, session: Session, req: BaseModel) -> list[ContinuingLearner]:
        body = await self._grid_page(session, OPERATIONS[OperationKind.LIST_PENDING_CONTINUING])
        return [ContinuingLearner.from_row(r, with_control=True) for r in self._grid_rows(body)]

    async def _search_learner(self, session: Session, req: SearchLearnerRequest) -> SearchResult:
        path = PATHS.search_learner_api.format(identifier=quote(req.identifier, safe=""))
        raw = await self.transport.send(session, path, profile=HeaderProfile.AJAX)
        payload = raw.json()
        if not isinstance(payload, dict):
            phrase = self._phrases(OperationKind.SEARCH_LEARNER).business[:1] or (P.LEARNER_NOT_FOUND,)
            raise BusinessError(
                f"{phrase[0]}: {req.identifier}", phrase=phrase[0], raw_snippet=snippet(raw.body)
            )
        return SearchResult.from_api(payload)

    async def _get_institution(self, session: Session, req: BaseModel) -> Institution:
        raw = await self._get(session, PATHS.institution)
        soup = soup_of(raw.body)
        values: dict[str, str] = {}
        for name, (suffix, kind) in Institution.FIELDS.items():
            key = element_id(suffix)
            if kind == "select":
                picked = selected_option(soup, key)
                value = picked[1] if picked else ""
            else:
                value = input_value(soup, key) or ""
            values[name] = value.strip().lower()
        if not (values["name"] or values["code"]):
            raise ExtractionError("Institution page carried no institution fields.", raw_snippet=snippet(raw.body))
        return Institution(**values)

    async def _request_placement(self, session: Session, req: PlacementRequest) -> ActionResult:
        kind = OperationKind.REQUEST_PLACEMENT
        phrases = self._phrases(kind)
        page = await self._get(session, PATHS.student_index)
        can_admit = flag_enabled(page.body, SELECTORS.can_admit_flag_id)
        can_request = flag_enabled(page.body, SELECTORS.can_request_flag_id)
        if can_request is False:
            raise BusinessError("Requesting learners is currently disabled on the portal.", phrase=P.REQUEST_DISABLED)

        resp = await self._post(
            session,
            PATHS.student_index,
            {
                SELECTORS.admit_button: "Request Placement",
                field("txtAdmt"): "0",
                field("txtCanAdmt"): "0" if can_admit is False else "1",
                field("txtCanReq"): "1",
                field("txtGender"): req.gender.upper(),
                field("txtIndex"): req.index_no,
                field("txtMarks"): req.marks,
                field("txtName"): req.name,
                field("txtReq"): "1",
                field("txtSName"): req.school_admitted,
                field("txtSName2"): req.school_admitted,
                field("txtSchool"): req.school_selected_code,
                field("txtSearch"): req.index_no,
                field("txtStatus"): "",
            },
            profile=HeaderProfile.AJAX,
            trigger=SELECTORS.admit_button,
        )
        if not resp.redirected_to(PATHS.student_index_request):
            # The vacancy check result is only carried inside the returned view state.
            decoded = session.view_state.decoded_text()
            phrase = phrases.first_business(decoded) or phrases.first_business(resp.body)
            if phrase:
                raise BusinessError(
                    f"{phrase} Request extra slots from the Director Secondary.",
                    phrase=phrase,
                    raw_snippet=snippet(resp.body),
                )
            raise self._unknown(kind, session, "Portal did not redirect to the placement request page.", resp.body)

        await self._get(session, PATHS.student_index_request)
        resp = await self._post(
            session,
            PATHS.student_index_request,
            {
                SELECTORS.admit_button: "Apply",
                field("txtFileNo"): req.adm,
                field("txtGender"): req.gender.upper(),
                field("txtIndex"): req.index_no,
                field("txtMarks"): req.marks,
                field("txtName"): req.name,
                field("txtIDNo"): req.parent_id,
                field("txtPhone"): req.parent_tel,
                field("txtWReq"): req.requested_by_text,
            },
            profile=HeaderProfile.AJAX,
            trigger=SELECTORS.admit_button,
        )
        message = element_text(resp.body, SELECTORS.message_label_id) or ""
        if phrases.first_success(message):
            return ActionResult(message=message, index_no=req.index_no)
        if message:
            raise BusinessError(
                f"Placement request rejected: {message}",
                phrase=phrases.first_business(message) or "",
                raw_snippet=snippet(resp.body),
            )
        raise self._unknown(kind, session, "No message after applying for placement.", resp.body)

    async def _admit(self, session: Session, req: AdmitRequest) -> ActionResult:
        kind = OperationKind.ADMIT
        phrases = self._phrases(kind)
        page = await self._get(session, PATHS.student_index)
        can_admit = flag_enabled(page.body, SELECTORS.can_admit_flag_id)
        can_request = flag_enabled(page.body, SELECTORS.can_request_flag_id)
        if can_admit is False:
            raise BusinessError("Admitting learners is currently disabled on the portal.", phrase=P.ADMISSION_DISABLED)

        resp = await self._post(
            session,
            PATHS.student_index,
            {
                SELECTORS.admit_button: "Admit Student",
                SELECTORS.script_manager: f"{SELECTORS.update_panel}|{SELECTORS.admit_button}",
                field("txtAdmt"): "1",
                field("txtCanAdmt"): "1",
                field("txtCanReq"): "0" if can_request is False else "1",
                field("txtGender"): req.gender.upper(),
                field("txtIndex"): req.index_no,
                field("txtMarks"): req.marks,
                field("txtName"): req.name,
                field("txtReq"): "0",
                field("txtSName"): req.school_admitted,
                field("txtSName2"): req.school_admitted,
                field("txtSchool"): req.school_selected_code,
                field("txtSearch"): req.index_no,
                field("txtStatus"): "",
            },
        )
        if resp.redirected_to(PATHS.student_index_request):
            phrase = phrases.business[0] if phrases.business else P.REQUEST_FIRST
            raise BusinessError(f"Admission failed, please {phrase}.", phrase=phrase, raw_snippet=snippet(resp.body))
        if resp.path.lower() != PATHS.student_index_check.lower():
            raise self._unknown(kind, session, "Portal did not open the admission confirmation page.", resp.body)

        resp = await self._post(
            session,
            PATHS.student_index_check,
            {
                SELECTORS.admit_button: "Admit Student",
                field("txtBCert"): req.contact_tel,
                field("txtGender"): req.gender.upper(),
                field("txtIndex"): req.index_no,
                field("txtMarks"): req.marks,
                field("txtName"): req.name,
                field("txtUPI"): req.adm,
            },
        )
        message = element_text(resp.body, SELECTORS.message_label_id) or ""
        if phrases.first_success(message):
            return ActionResult(message=message, index_no=req.index_no)
        if message:
            raise BusinessError(message, phrase=phrases.first_business(message) or "", raw_snippet=snippet(resp.body))
        raise self._unknown(kind, session, "No message after confirming admission.", resp.body)

    async def _open_capture_page(self, session: Session, req: BiodataRequest) -> None:
        kind = OperationKind.CAPTURE_BIODATA
        if req.entry == "joining":
            await self._get(session, PATHS.list_admitted)
            resp = await self._post(
                session,
                PATHS.list_admitted,
                {SELECTORS.records_per_page: self.records_per_page},
                event_target=SELECTORS.grid_target,
                event_argument=req.row_action,
            )
            if resp.path.lower() != PATHS.capture_biodata.lower():
                message = element_text(resp.body, SELECTORS.message_label_id)
                if message:
                    raise BusinessError(message, raw_snippet=snippet(resp.body))
                raise self._unknown(kind, session, "Row action did not open the capture page.", resp.body)
        elif req.entry == "continuing":
            await self._get(session, PATHS.list_pending_continuing)
            resp = await self._post(
                session,
                PATHS.list_pending_continuing,
                {SELECTORS.records_per_page: self.records_per_page, req.row_control: "BIO-BC"},
            )
            if resp.path.lower() != PATHS.capture_biodata.lower():
                raise self._unknown(kind, session, "Row control did not open the capture page.", resp.body)
        elif req.entry == "new":
            await self._get(session, PATHS.list_learners)
            resp = await self._post(
                session,
                PATHS.list_learners,
                {
                    SELECTORS.birth_certificate_filter: "1",
                    SELECTORS.category: str(grade_code(req.grade)),
                    SELECTORS.category_secondary: "9 ",
                    SELECTORS.records_per_page: self.records_per_page,
                    SELECTORS.add_learner_button: _ADD_WITH_BC,
                },
                profile=HeaderProfile.AJAX,
                event_target=SELECTORS.records_per_page,
                trigger=SELECTORS.category,
            )
            if not resp.redirected_to(PATHS.capture_biodata):
                raise self._unknown(kind, session, "Portal did not redirect to the capture page.", resp.body)

    def _biodata_fields(self, req: BiodataRequest) -> dict[str, str]:
        names = split_names(req.name)
        out = {
            field("Birth_Cert_No"): req.birth_certificate_no,
            field("DOB$ctl00"): format_postback_date(req.dob),
            field("Gender"): req.gender.upper(),
            field("FirstName"): names.firstname,
            field("Nationality"): str(nationality_code(req.nationality)),
            field("OtherNames"): names.other_name,
            field("Surname"): names.surname,
            field("UPI"): "",
            SELECTORS.county_select: req.county_code,
            field("ddlmedicalcondition"): str(medical_condition_code(req.medical_condition)),
            SELECTORS.sub_county_select: req.sub_county_code,
            field("mydob"): "",
            field("myimage"): "",
            field("txtPostalAddress"): req.address,
            field("txtSearch"): "",
            field("txtmobile"): "",
            field("optspecialneed"): "optspecialneed" if req.is_special else "optneedsno",
            field("txtEmailAddress"): "",
        }
        if req.father is not None and req.father.complete:
            out.update(
                {
                    field("txtFatherContacts"): req.father.tel,
                    field("txtFatherIDNO"): req.father.id,
                    field("txtFatherName"): req.father.name,
                    field("txtFatherUPI"): "",
                }
            )
        if req.guardian is not None and req.guardian.complete:
            out.update(
                {
                    field("txtGuardianIDNO"): req.guardian.id,
                    field("txtGuardianname"): req.guardian.name,
                    field("txtGuardianUPI"): "",
                    field("txtGuardiancontacts"): req.guardian.tel,
                }
            )
        if req.mother is not None and req.mother.complete:
            out.update(
                {
                    field("txtMotherIDNo"): req.mother.id,
                    field("txtMotherName"): req.mother.name,
                    field("txtMotherUPI"): "",
                    field("txtMothersContacts"): req.mother.tel,
                }
            )
        out[SELECTORS.save_biodata_button] = "Save Basic Details"
        return out

    async def _capture_biodata(self, session: Session, req: BiodataRequest) -> CaptureResult:
        kind = OperationKind.CAPTURE_BIODATA
        phrases = self._phrases(kind)

        await self._open_capture_page(session, req)
        await self._get(session, PATHS.capture_biodata)

        # County first: the sub-county options only exist after this partial postback.
        resp = await self._post(
            session,
            PATHS.capture_biodata,
            {
                field("DOB$ctl00"): format_postback_date(req.dob),
                field("Nationality"): str(nationality_code(req.nationality)),
                field("ddlClass"): str(grade_code(req.grade)),
                SELECTORS.county_select: req.county_code,
                field("ddlmedicalcondition"): str(medical_condition_code(req.medical_condition)),
                SELECTORS.sub_county_select: "0",
            },
            profile=HeaderProfile.AJAX,
            event_target=SELECTORS.county_select,
            trigger=SELECTORS.county_select,
        )
        if _UPDATE_PANEL_MARKER not in resp.body:
            raise ProtocolError("County postback did not return the update panel.", raw_snippet=snippet(resp.body))

        fields = self._biodata_fields(req)
        resp = await self._post(session, PATHS.capture_biodata, fields, multipart=True)

        ignored = False
        dialog = element_text(resp.body, SELECTORS.conflict_dialog_id) or ""
        if dialog and phrases.first_conflict(dialog):
            self._logger.info("Portal asked to confirm a bio-data conflict; resubmitting with the ignore flag.")
            fields[SELECTORS.ignore_option] = SELECTORS.ignore_option_yes
            resp = await self._post(session, PATHS.capture_biodata, fields, multipart=True)
            ignored = True

        return self._capture_result(session, resp, phrases, ignored=ignored)

    def _capture_result(
        self, session: Session, resp: RawResponse, phrases: OperationPhrases, *, ignored: bool
    ) -> CaptureResult:
        kind = OperationKind.CAPTURE_BIODATA
        soup = soup_of(resp.body)
        alert_el = soup.select_one(SELECTORS.alert_selector)
        alert = (element_text(soup, SELECTORS.alert_selector) or "").lstrip("×").strip()

        if not alert:
            upi_message = element_text(soup, SELECTORS.new_upi_message_id) or ""
            if upi_message.startswith(P.NEW_UPI) or (upi_message and phrases.first_success(upi_message)):
                upi = upi_message.split(":", 1)[1].strip() if ":" in upi_message else ""
                return CaptureResult(upi=upi, message="Received a new UPI", ignored_conflict=ignored)
            raise self._unknown(kind, session, "Bio-data response carried no alert message.", resp.body)

        if phrases.first_success(alert):
            return CaptureResult(
                upi=input_value(soup, SELECTORS.upi_input_id) or "",
                message=alert,
                alert=str(alert_el) if alert_el is not None else None,
                ignored_conflict=ignored,
            )
        phrase = phrases.first_business(alert)
        if phrase:
            raise BusinessError(alert.replace(phrase, "", 1).strip() or alert, phrase=phrase, raw_snippet=snippet(resp.body))
        raise self._unknown(kind, session, alert, resp.body)

    async def _transfer(self, session: Session, req: TransferRequest) -> ActionResult:
        kind = OperationKind.TRANSFER
        phrases = self._phrases(kind)
        await self._get(session, PATHS.transfer_receive)
        await self._post(
            session,
            PATHS.transfer_receive,
            {
                SELECTORS.transfer_reason: "1",
                SELECTORS.transfer_search_command: "CHECK",
                SELECTORS.transfer_remark: req.remark,
                SELECTORS.transfer_search: req.search_key,
            },
        )
        resp = await self._post(
            session,
            PATHS.transfer_receive,
            {
                SELECTORS.admit_button: "[ SAVE ]",
                SELECTORS.transfer_reason: "1",
                SELECTORS.transfer_remark: req.remark,
                SELECTORS.transfer_search: req.search_key,
            },
        )
        # The confirmation is rendered by script, so it only shows up in the view state.
        decoded = session.view_state.decoded_text()
        phrase = phrases.first_success(decoded)
        if phrase:
            return ActionResult(message=phrase)
        message = element_text(resp.body, SELECTORS.message_label_id)
        if message:
            raise BusinessError(message, phrase=phrases.first_business(message) or "", raw_snippet=snippet(resp.body))
        raise self._unknown(kind, session, "Transfer was not confirmed by the portal.", resp.body)

    async def _request_continuing(self, session: Session, req: ContinuingRequest) -> ContinuingLearner:
        kind = OperationKind.REQUEST_CONTINUING
        path = PATHS.list_continuing_requests
        await self._get(session, path)
        await self._post(session, path, {SELECTORS.add_learner_button: "[ ADD NEW STUDENT ]"})

        names = split_names(req.name)
        resp = await self._post(
            session,
            path,
            {
                SELECTORS.save_learner_button: "[  SAVE  ]",
                field("SelectGender"): req.gender.upper(),
                field("SelectGrade"): str(grade_code(req.grade)),
                SELECTORS.records_per_page: self.records_per_page,
                field("txtAdmNo"): req.adm,
                field("txtBCert"): req.birth_certificate_no,
                field("txtFirstname"): req.firstname or names.firstname,
                field("txtIndex"): req.index_no,
                field("txtOthername"): req.other_name or names.other_name,
                field("txtRemark"): req.remarks,
                field("txtSurname"): req.surname or names.surname,
                field("txtYear"): "" if req.kcpe_year is None else str(req.kcpe_year),
            },
        )
        learners = [ContinuingLearner.from_row(r) for r in self._grid_rows(resp.body)]
        matches = [x for x in learners if x.adm == req.adm and x.birth_certificate_no == req.birth_certificate_no]
        if len(matches) == 1:
            return matches[0]
        message = element_text(resp.body, SELECTORS.message_label_id)
        if message:
            raise BusinessError(message, raw_snippet=snippet(resp.body))
        raise self._unknown(
            kind,
            session,
            f"Expected exactly one listed request for adm {req.adm}, found {len(matches)}.",
            resp.body,
        )
