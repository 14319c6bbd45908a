from __future__ import annotations

import re
from datetime import date
from typing import Any, ClassVar, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .portal.selectors import SELECTORS
from .portal.tables import TableRow
from .util.codes import normalize_grade
from .util.dates import parse_portal_date
from .util.names import join_names, split_names


_INDEX_LEN = 11
_SCHOOL_LABEL_RE = re.compile(
    r"(?P<code>\d+).+?(?<=\d )(?P<name>[a-zA-Z ].+?)\s*School Type:(?P<type>[a-zA-Z]+).School Category:(?P<category>[a-zA-Z]+)",
    re.I,
)


def _gender(value: object) -> str:
    s = str(value or "").strip().lower()
    if s in {"m", "male"}:
        return "m"
    if s in {"f", "female"}:
        return "f"
    raise ValueError(f"gender must be 'm' or 'f' (got {value!r})")


def _index_no(value: object) -> str:
    s = str(value or "").strip()
    if len(s) != _INDEX_LEN:
        raise ValueError(f"index number must be {_INDEX_LEN} characters (got {s!r})")
    return s


def _full_name(value: object) -> str:
    s = " ".join(str(value or "").split()).lower()
    split_names(s)  # raises ValueError for single names
    return s


def _int_or_none(value: str) -> Optional[int]:
    s = (value or "").strip()
    try:
        return int(float(s)) if s else None
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class EmptyRequest(BaseModel):
    pass


class ListLearnersRequest(BaseModel):
    grade: str

    @field_validator("grade", mode="before")
    @classmethod
    def _grade(cls, v: object) -> str:
        return normalize_grade(str(v or ""))


class SearchLearnerRequest(BaseModel):
    identifier: str

    @field_validator("identifier", mode="before")
    @classmethod
    def _identifier(cls, v: object) -> str:
        s = str(v or "").strip()
        if not s:
            raise ValueError("a UPI or birth certificate number is required")
        return s


class Contact(BaseModel):
    name: str = ""
    id: str = ""
    tel: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.name and self.id and self.tel)


class PlacementRequest(BaseModel):
    """A joining learner to request placement for (Studindex -> Studindexreq)."""

    index_no: str
    name: str
    gender: str
    marks: int
    adm: str = ""
    school_admitted: str = ""
    school_selected_code: str = ""
    parent_id: str = ""
    parent_tel: str = ""
    requested_by: str = ""

    @field_validator("index_no", mode="before")
    @classmethod
    def _check_index(cls, v: object) -> str:
        return _index_no(v)

    @field_validator("gender", mode="before")
    @classmethod
    def _check_gender(cls, v: object) -> str:
        return _gender(v)

    @property
    def requested_by_text(self) -> str:
        return self.requested_by or f"requested by parent with id number {self.parent_id}"


class AdmitRequest(BaseModel):
    index_no: str
    name: str
    gender: str
    marks: int
    adm: str = ""
    school_admitted: str = ""
    school_selected_code: str = ""
    contact_tel: str = ""

    @field_validator("index_no", mode="before")
    @classmethod
    def _check_index(cls, v: object) -> str:
        return _index_no(v)

    @field_validator("gender", mode="before")
    @classmethod
    def _check_gender(cls, v: object) -> str:
        return _gender(v)


CaptureEntry = Literal["direct", "joining", "continuing", "new"]


class BiodataRequest(BaseModel):
    """
    Bio-data for one learner, plus how to reach the capture page.

    entry:
    - direct: alearner.aspx is already the current capture target
    - joining: admitted-list row action (`row_action`, e.g. "ActionFOS$3")
    - continuing: pending-continuing row control (`row_control`)
    - new: Listlearners "ADD NEW STUDENT (WITH BC)" for `grade`
    """

    entry: CaptureEntry = "direct"
    name: str
    gender: str
    dob: date
    birth_certificate_no: str
    grade: str
    nationality: str = "kenya"
    county_code: str
    sub_county_code: str
    medical_condition: str = ""
    is_special: bool = False
    address: str = ""
    index_no: str = ""
    father: Optional[Contact] = None
    mother: Optional[Contact] = None
    guardian: Optional[Contact] = None
    row_action: str = ""
    row_control: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v: object) -> str:
        return _full_name(v)

    @field_validator("gender", mode="before")
    @classmethod
    def _check_gender(cls, v: object) -> str:
        return _gender(v)

    @field_validator("grade", mode="before")
    @classmethod
    def _grade(cls, v: object) -> str:
        return normalize_grade(str(v or ""))

    @field_validator("birth_certificate_no", "county_code", "sub_county_code", mode="before")
    @classmethod
    def _required_text(cls, v: object) -> str:
        s = str(v if v is not None else "").strip()
        if not s:
            raise ValueError("field is required")
        return s

    @model_validator(mode="after")
    def _entry_needs(self) -> "BiodataRequest":
        if self.entry == "joining" and not self.row_action:
            raise ValueError("entry 'joining' requires row_action (e.g. 'ActionFOS$0')")
        if self.entry == "continuing" and not self.row_control:
            raise ValueError("entry 'continuing' requires row_control")
        return self


class TransferRequest(BaseModel):
    upi: str = ""
    birth_certificate_no: str = ""
    remark: str = ""

    @model_validator(mode="after")
    def _one_identifier(self) -> "TransferRequest":
        self.upi = self.upi.strip()
        self.birth_certificate_no = self.birth_certificate_no.strip()
        if not (self.upi or self.birth_certificate_no):
            raise ValueError("transfer requires upi or birth_certificate_no")
        return self

    @property
    def search_key(self) -> str:
        return self.upi or self.birth_certificate_no


class ContinuingRequest(BaseModel):
    adm: str
    name: str
    gender: str
    grade: str
    birth_certificate_no: str
    index_no: str = ""
    kcpe_year: Optional[int] = None
    remarks: str = ""
    surname: str = ""
    firstname: str = ""
    other_name: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, v: object) -> str:
        return _full_name(v)

    @field_validator("gender", mode="before")
    @classmethod
    def _check_gender(cls, v: object) -> str:
        return _gender(v)

    @field_validator("grade", mode="before")
    @classmethod
    def _grade(cls, v: object) -> str:
        return normalize_grade(str(v or ""))

    @field_validator("adm", "birth_certificate_no", mode="before")
    @classmethod
    def _required_text(cls, v: object) -> str:
        s = str(v if v is not None else "").strip().lower()
        if not s:
            raise ValueError("field is required")
        return s


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class RowModel(BaseModel):
    """
    Result model built from a grid row. `COLUMNS` maps our field names to portal headers.
    """

    COLUMNS: ClassVar[Mapping[str, str]] = {}

    @classmethod
    def row_values(cls, row: TableRow) -> dict[str, Any]:
        return {k: row.get(header) for k, header in cls.COLUMNS.items()}


class ListedLearner(RowModel):
    COLUMNS: ClassVar[Mapping[str, str]] = {
        "upi": "Learner UPI",
        "name": "Learner Name",
        "gender": "Gender",
        "dob": "Date of Birth",
        "age": "AGE",
        "disability": "Disability",
        "birth_certificate_no": "Birth Cert No",
        "medical_condition": "Medical Condition",
        "nhif_no": "NHIF No",
    }

    upi: str = ""
    name: str = ""
    gender: str = ""
    dob: Optional[date] = None
    age: Optional[int] = None
    is_special: bool = False
    birth_certificate_no: str = ""
    medical_condition: str = ""
    nhif_no: Optional[int] = None
    action_id: Optional[str] = None
    grade: str = ""

    @classmethod
    def from_row(cls, row: TableRow, *, grade: str) -> "ListedLearner":
        v = cls.row_values(row)
        return cls(
            upi=v["upi"],
            name=" ".join(v["name"].lower().replace(",", " ").split()),
            gender=v["gender"].lower(),
            dob=parse_portal_date(v["dob"]),
            age=_int_or_none(v["age"]),
            is_special=bool(v["disability"].strip()),
            birth_certificate_no=v["birth_certificate_no"].lower(),
            medical_condition=v["medical_condition"].lower(),
            nhif_no=_int_or_none(v["nhif_no"]),
            action_id=row.action_id,
            grade=grade,
        )


class SelectedLearner(RowModel):
    COLUMNS: ClassVar[Mapping[str, str]] = {
        "index_no": "Index",
        "name": "Name",
        "gender": "Gender",
        "year_of_birth": "Year of Birth",
        "marks": "Marks",
        "sub_county": "Sub-County",
    }

    index_no: str = ""
    name: str = ""
    gender: str = ""
    year_of_birth: Optional[int] = None
    marks: Optional[int] = None
    sub_county: str = ""

    @classmethod
    def from_row(cls, row: TableRow) -> "SelectedLearner":
        v = cls.row_values(row)
        return cls(
            index_no=v["index_no"].lower(),
            name=v["name"].lower(),
            gender=v["gender"].lower(),
            year_of_birth=_int_or_none(v["year_of_birth"]),
            marks=_int_or_none(v["marks"]),
            sub_county=v["sub_county"].lower(),
        )


class CaptureActions(BaseModel):
    capture_with_birth_certificate: str
    capture_without_birth_certificate: str
    reset_biodata_capture: str
    undo_admission: str


class AdmittedLearner(RowModel):
    COLUMNS: ClassVar[Mapping[str, str]] = {
        "index_no": "Index",
        "name": "Name",
        "gender": "Gender",
        "year_of_birth": "Year of Birth",
        "marks": "Marks",
        "sub_county": "Sub-County",
        "upi": "UPI",
    }

    no: int
    index_no: str = ""
    name: str = ""
    gender: str = ""
    year_of_birth: Optional[int] = None
    marks: Optional[int] = None
    sub_county: str = ""
    upi: str = ""
    event_target: str = ""
    actions: CaptureActions

    @classmethod
    def from_row(cls, row: TableRow) -> "AdmittedLearner":
        # Row actions are positional postback arguments on the grid itself.
        v = cls.row_values(row)
        i = row.index
        return cls(
            no=i + 1,
            index_no=v["index_no"],
            name=v["name"].lower(),
            gender=v["gender"].lower(),
            year_of_birth=_int_or_none(v["year_of_birth"]),
            marks=_int_or_none(v["marks"]),
            sub_county=v["sub_county"].lower(),
            upi=v["upi"],
            event_target=SELECTORS.grid_target,
            actions=CaptureActions(
                capture_with_birth_certificate=SELECTORS.capture_with_bc_action.format(i=i),
                capture_without_birth_certificate=SELECTORS.capture_without_bc_action.format(i=i),
                reset_biodata_capture=SELECTORS.reset_capture_action.format(i=i),
                undo_admission=SELECTORS.undo_admission_action.format(i=i),
            ),
        )


class SchoolSelected(BaseModel):
    original: str
    code: str = ""
    name: str = ""
    type: str = ""
    category: str = ""

    @classmethod
    def parse(cls, label: str) -> Optional["SchoolSelected"]:
        text = (label or "").strip()
        if not text:
            return None
        m = _SCHOOL_LABEL_RE.search(text)
        if not m:
            return cls(original=text)
        return cls(
            original=text,
            code=m.group("code"),
            name=m.group("name").strip(),
            type=m.group("type"),
            category=m.group("category"),
        )


class PlacementRecord(RowModel):
    COLUMNS: ClassVar[Mapping[str, str]] = {
        "no": "No.",
        "index_no": "Index No",
        "name": "Student Name",
        "gender": "Gender",
        "marks": "Marks",
        "school_selected": "Current Selected To",
        "requested_by": "Request Description",
        "parent_id": "Parent's IDNo",
        "parent_tel": "Mobile No",
        "date_captured": "Date Captured",
        "approved_on": "Approved On",
        "approved_by": "Approved By",
        "status": "Status",
    }

    no: Optional[int] = None
    index_no: str = ""
    name: str = ""
    gender: str = ""
    marks: Optional[int] = None
    school_selected: Optional[SchoolSelected] = None
    requested_by: str = ""
    parent_id: str = ""
    parent_tel: str = ""
    date_captured: str = ""
    approved_on: str = ""
    approved_by: str = ""
    status: str = ""
    delete_control: Optional[str] = None

    @classmethod
    def from_row(cls, row: TableRow) -> "PlacementRecord":
        v = cls.row_values(row)
        return cls(
            no=_int_or_none(v["no"]),
            index_no=v["index_no"],
            name=v["name"].lower(),
            gender=v["gender"].lower(),
            marks=_int_or_none(v["marks"]),
            school_selected=SchoolSelected.parse(v["school_selected"]),
            requested_by=v["requested_by"],
            parent_id=v["parent_id"],
            parent_tel=v["parent_tel"],
            date_captured=v["date_captured"],
            approved_on=v["approved_on"],
            approved_by=v["approved_by"],
            status=v["status"],
            delete_control=row.control("Del"),
        )


class ContinuingLearner(RowModel):
    COLUMNS: ClassVar[Mapping[str, str]] = {
        "no": "No.",
        "adm": "Adm No",
        "surname": "Surname",
        "firstname": "Firstname",
        "other_name": "Othername",
        "gender": "Gender",
        "kcpe_year": "KCPE Year",
        "index_no": "Index",
        "birth_certificate_no": "Birth Certificate",
        "grade": "Grade",
        "remarks": "Remark",
        "upi": "UPI",
    }

    no: Optional[int] = None
    adm: str = ""
    surname: str = ""
    firstname: str = ""
    other_name: str = ""
    name: str = ""
    gender: str = ""
    kcpe_year: Optional[int] = None
    index_no: str = ""
    birth_certificate_no: str = ""
    grade: str = ""
    remarks: str = ""
    upi: str = ""
    capture_control: Optional[str] = None

    @classmethod
    def from_row(cls, row: TableRow, *, with_control: bool = False) -> "ContinuingLearner":
        v = cls.row_values(row)
        surname, firstname, other = v["surname"].lower(), v["firstname"].lower(), v["other_name"].lower()
        return cls(
            no=_int_or_none(v["no"]),
            adm=v["adm"].lower(),
            surname=surname,
            firstname=firstname,
            other_name=other,
            name=join_names(surname, firstname, other),
            gender=v["gender"].lower(),
            kcpe_year=_int_or_none(v["kcpe_year"]),
            index_no=v["index_no"],
            birth_certificate_no=v["birth_certificate_no"].lower(),
            grade=v["grade"].lower(),
            remarks=v["remarks"].lower(),
            upi=v["upi"],
            capture_control=(row.controls[0] if (with_control and row.controls) else None),
        )


class InstitutionRef(BaseModel):
    name: str = ""
    code: str = ""
    type: str = ""
    level: str = ""


class SearchResult(BaseModel):
    name: str = ""
    dob: str = ""
    upi: str = ""
    gender: str = ""
    birth_certificate_no: str = ""
    class_code: Optional[int] = None
    grade: str = ""
    is_special: bool = False
    nhif_no: Optional[int] = None
    is_learner: bool = False
    current_institution: InstitutionRef = Field(default_factory=InstitutionRef)
    nationality: Optional[int] = None
    county_code: Optional[int] = None
    sub_county_code: Optional[int] = None
    father: Contact = Field(default_factory=Contact)
    mother: Contact = Field(default_factory=Contact)
    guardian: Contact = Field(default_factory=Contact)
    postal_address: str = ""

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "SearchResult":
        """
        Map the generic learner API record (keys in any case) onto our fields.
        """
        d = {str(k).lower(): v for k, v in payload.items()}

        def s(key: str) -> str:
            v = d.get(key)
            return "" if v is None else str(v).strip()

        def n(key: str) -> Optional[int]:
            return _int_or_none(s(key))

        def contact(prefix: str, id_key: str, tel_key: str) -> Contact:
            return Contact(name=s(f"{prefix}_name").lower(), id=s(id_key), tel=s(tel_key))

        return cls(
            name=s("names").lower().replace(",", ""),
            dob=s("dob2"),
            upi=s("upi"),
            gender=s("gender").lower(),
            birth_certificate_no=s("birth_cert_no").lower(),
            class_code=n("class_code"),
            grade=s("class_name").lower(),
            is_special=bool(n("special_medical_condition")),
            nhif_no=n("nhif_no"),
            is_learner="current learner" in s("xcatdesc").lower(),
            current_institution=InstitutionRef(
                name=s("institution_name").lower(),
                code=s("institution_code"),
                type=s("institution_type"),
                level=s("level_name"),
            ),
            nationality=n("nationality"),
            county_code=n("county_code"),
            sub_county_code=n("sub_county_learner"),
            father=contact("father", "father_idno", "father_contacts"),
            mother=contact("mother", "mother_idno", "mother_contacts"),
            guardian=contact("guardian", "guardian_idno", "guardian_contacts"),
            postal_address=s("postal_address"),
        )


class Institution(BaseModel):
    # field name -> (element suffix, kind) where kind is "input" or "select"
    FIELDS: ClassVar[Mapping[str, tuple[str, str]]] = {
        "name": ("Institution_Name", "input"),
        "knec_code": ("Knec_Code", "input"),
        "code": ("Institution_Code", "input"),
        "gender": ("Classification_by_Gender", "select"),
        "registration_number": ("Institution_Current_Code", "input"),
        "type": ("Institution_Type", "select"),
        "registration_status": ("Institution_Status", "select"),
        "accommodation": ("Accommodation_Code", "select"),
        "tsc_code": ("Tsc_Code", "input"),
        "category": ("Institution_Category_Code", "select"),
        "education_level": ("Institution_Level_Code", "select"),
        "institution_mobility": ("Mobile_Institution", "select"),
        "residence": ("Institution_Residence", "select"),
        "education_system": ("Education_System_Code", "select"),
        "constituency": ("Constituency_Code", "select"),
        "kra_pin": ("Employer_pin", "input"),
        "registration_date": ("Registration_Date", "input"),
        "ward": ("Ward_Code", "select"),
        "zone": ("Zone_Code", "select"),
        "county": ("County_Code", "select"),
        "sub_county": ("Sub_County_Code", "select"),
        "cluster": ("Institution_Cluster", "select"),
        "ownership": ("Premise_Ownership", "select"),
        "ownership_document": ("Ownership_Document", "select"),
        "owner": ("Proprietor_Code", "input"),
        "incorporation_certificate_number": ("Registration_Certificate", "input"),
        "nearest_police_station": ("Nearest_Police_Station", "input"),
        "nearest_health_facility": ("Nearest_Health_Facility", "input"),
        "nearest_town": ("Nearest_Town", "input"),
        "postal_address": ("Postal_Address", "input"),
        "telephone_number": ("Tel_Number", "input"),
        "mobile_number": ("Mobile_Number1", "input"),
        "alt_telephone_number": ("Tel_Number2", "input"),
        "alt_mobile_number": ("Mobile_Number2", "input"),
        "email": ("Email_Address", "input"),
        "website": ("Website", "input"),
        "social_media_handles": ("Social_Media", "input"),
    }

    name: str = ""
    knec_code: str = ""
    code: str = ""
    gender: str = ""
    registration_number: str = ""
    type: str = ""
    registration_status: str = ""
    accommodation: str = ""
    tsc_code: str = ""
    category: str = ""
    education_level: str = ""
    institution_mobility: str = ""
    residence: str = ""
    education_system: str = ""
    constituency: str = ""
    kra_pin: str = ""
    registration_date: str = ""
    ward: str = ""
    zone: str = ""
    county: str = ""
    sub_county: str = ""
    cluster: str = ""
    ownership: str = ""
    ownership_document: str = ""
    owner: str = ""
    incorporation_certificate_number: str = ""
    nearest_police_station: str = ""
    nearest_health_facility: str = ""
    nearest_town: str = ""
    postal_address: str = ""
    telephone_number: str = ""
    mobile_number: str = ""
    alt_telephone_number: str = ""
    alt_mobile_number: str = ""
    email: str = ""
    website: str = ""
    social_media_handles: str = ""


class CaptureResult(BaseModel):
    upi: str = ""
    message: str = ""
    alert: Optional[str] = None
    ignored_conflict: bool = False


class ActionResult(BaseModel):
    message: str
    index_no: str = ""
