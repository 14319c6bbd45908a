from __future__ import annotations

import pytest
from pydantic import ValidationError

from nemis_sync.models import (
    AdmitRequest,
    BiodataRequest,
    ContinuingLearner,
    ListLearnersRequest,
    PlacementRecord,
    PlacementRequest,
    SchoolSelected,
    SearchResult,
    TransferRequest,
)
from nemis_sync.portal.tables import extract


def _biodata(**overrides: object) -> dict:
    data: dict = {
        "name": "Kamau  John Mwangi",
        "gender": "Female",
        "dob": "2010-12-26",
        "birth_certificate_no": " 123456 ",
        "grade": "Form1",
        "county_code": 47,
        "sub_county_code": "280",
    }
    data.update(overrides)
    return data


def test_biodata_request_normalizes_fields() -> None:
    req = BiodataRequest.model_validate(_biodata())
    assert req.entry == "direct"
    assert req.name == "kamau john mwangi"
    assert req.gender == "f"
    assert req.grade == "form 1"
    assert req.birth_certificate_no == "123456"
    assert req.county_code == "47"


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "kamau"},
        {"gender": "x"},
        {"grade": "class 3"},
        {"birth_certificate_no": "  "},
        {"entry": "joining"},
        {"entry": "continuing"},
        {"entry": "somewhere"},
    ],
)
def test_biodata_request_rejects_bad_input(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        BiodataRequest.model_validate(_biodata(**overrides))


def test_index_number_length_checked() -> None:
    with pytest.raises(ValidationError):
        AdmitRequest(index_no="1234", name="x", gender="m", marks=300)
    req = PlacementRequest(index_no=" 12345678901 ", name="x", gender="M", marks=300, parent_id="998")
    assert req.index_no == "12345678901"
    assert req.requested_by_text == "requested by parent with id number 998"


def test_transfer_needs_an_identifier() -> None:
    with pytest.raises(ValidationError):
        TransferRequest(remark="moved")
    assert TransferRequest(birth_certificate_no=" BC1 ").search_key == "BC1"


def test_list_learners_request_grade() -> None:
    assert ListLearnersRequest(grade="GRADE 7").grade == "grade 7"


def test_school_selected_parse() -> None:
    label = "20404007 KAMUKUNJI HIGH SCHOOL School Type:Public School Category:Regular"
    school = SchoolSelected.parse(label)
    assert school is not None
    assert school.code == "20404007"
    assert school.name == "KAMUKUNJI HIGH SCHOOL"
    assert school.type == "Public"
    assert school.category == "Regular"

    plain = SchoolSelected.parse("somewhere else")
    assert plain is not None and plain.code == "" and plain.original == "somewhere else"
    assert SchoolSelected.parse("") is None


def test_placement_record_from_row() -> None:
    grid = """
    <table>
      <tr><th>No.</th><th>Index No</th><th>Student Name</th><th>Gender</th><th>Marks</th>
          <th>Current Selected To</th><th>Status</th><th></th></tr>
      <tr><td>1</td><td>12345678901</td><td>KAMAU JOHN</td><td>M</td><td>350</td>
          <td>20404007 KAMUKUNJI HIGH SCHOOL School Type:Public School Category:Regular</td><td>Pending</td>
          <td><input type="submit" name="ctl00$ContentPlaceHolder1$grdLearners$ctl02$Del" value="Del" /></td></tr>
    </table>
    """
    record = PlacementRecord.from_row(extract(grid)[0])
    assert record.no == 1
    assert record.name == "kamau john"
    assert record.marks == 350
    assert record.school_selected is not None and record.school_selected.code == "20404007"
    assert record.delete_control == "ctl00$ContentPlaceHolder1$grdLearners$ctl02$Del"


def test_continuing_learner_joins_names() -> None:
    grid = """
    <table>
      <tr><th>No.</th><th>Adm No</th><th>Surname</th><th>Firstname</th><th>Othername</th><th>KCPE Year</th></tr>
      <tr><td>1</td><td>A100</td><td>KAMAU</td><td>JOHN</td><td></td><td>2021</td></tr>
    </table>
    """
    learner = ContinuingLearner.from_row(extract(grid)[0])
    assert learner.adm == "a100"
    assert learner.name == "kamau john"
    assert learner.kcpe_year == 2021
    assert learner.capture_control is None


def test_search_result_from_api_any_key_case() -> None:
    result = SearchResult.from_api(
        {
            "names": "WANJIKU, MARY",
            "upi": "UPI9",
            "Class_Code": "13",
            "xcatdesc": "Not a learner",
            "NHIF_No": None,
            "Mother_Name": "JANE",
            "mother_idno": "77",
        }
    )
    assert result.name == "wanjiku mary"
    assert result.class_code == 13
    assert result.is_learner is False
    assert result.nhif_no is None
    assert result.mother.name == "jane"
    assert result.mother.id == "77"
    assert result.mother.complete is False
