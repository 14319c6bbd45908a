from __future__ import annotations

import pytest

from nemis_sync.errors import ExtractionError
from nemis_sync.portal.tables import (
    AnchorRule,
    NormalizationRules,
    PageScope,
    extract,
    find_table,
    needs_page_size_change,
    page_scope,
)


GRID = """
<table id="ctl00_ContentPlaceHolder1_grdLearners">
  <tr><th>No.</th><th>Learner Name</th><th>Gender</th><th></th></tr>
  <tr class="GridRow">
    <td>1</td><td> KAMAU&nbsp;JOHN </td><td>M</td>
    <td><a id="ctl00_ContentPlaceHolder1_grdLearners_ctl03_BtnView" href="#">View</a></td>
  </tr>
  <tr class="GridRow">
    <td>2</td><td>WANJIKU MARY</td><td>F</td>
    <td><a id="ctl00_ContentPlaceHolder1_grdLearners_ctl04_BtnView" href="#">View</a></td>
  </tr>
  <tr><td></td><td></td><td></td><td></td></tr>
  <tr><td colspan="4"><table><tr><td>1</td><td>2</td></tr></table></td></tr>
</table>
"""


def test_extract_keys_rows_by_header_and_skips_pager_rows() -> None:
    rows = extract(GRID)
    assert len(rows) == 2
    assert rows[0].get("Learner Name") == "KAMAU JOHN"
    assert rows[1].get("Gender") == "F"
    # Blank header falls back to its position.
    assert rows[0].get("3") == "View"
    assert rows[0].index == 0 and rows[1].index == 1


def test_extract_infers_row_actions_from_first_anchor() -> None:
    rows = extract(GRID, anchor=AnchorRule())
    assert [r.action_id for r in rows] == [
        "ctl00$ContentPlaceHolder1$grdLearners$ctl03$BtnView",
        "ctl00$ContentPlaceHolder1$grdLearners$ctl04$BtnView",
    ]


def test_extract_is_idempotent() -> None:
    assert extract(GRID, anchor=AnchorRule()) == extract(GRID, anchor=AnchorRule())


def test_row_actions_run_consecutively_from_first_anchor() -> None:
    rows = "".join(
        f"<tr><td>{i}</td><td><a id=\"ctl00_ContentPlaceHolder1_grdLearners_ctl03_BtnView\">View</a></td></tr>"
        if i == 1
        else f"<tr><td>{i}</td><td>View</td></tr>"
        for i in range(1, 6)
    )
    grid = f"<table><tr><th>No.</th><th></th></tr>{rows}</table>"
    ids = [r.action_id for r in extract(grid, anchor=AnchorRule())]
    assert ids == [f"ctl00$ContentPlaceHolder1$grdLearners$ctl{n}$BtnView" for n in ("03", "04", "05", "06", "07")]


def test_extract_without_anchor_raises_when_rule_given() -> None:
    grid = "<table><tr><th>A</th></tr><tr><td>x</td></tr></table>"
    with pytest.raises(ExtractionError):
        extract(grid, anchor=AnchorRule())


def test_extract_empty_and_header_only_tables() -> None:
    assert extract("") == []
    assert extract("<table><tr><th>A</th><th>B</th></tr></table>") == []


def test_normalization_rules_casefold_and_rename() -> None:
    rules = NormalizationRules(casefold_columns=frozenset({"Learner Name"}), rename={"Learner Name": "name"})
    rows = extract(GRID, rules)
    assert rows[0].get("name") == "kamau john"
    assert rows[0].get("Gender") == "M"


def test_row_controls_are_collected() -> None:
    grid = """
    <table>
      <tr><th>Adm</th><th>Action</th></tr>
      <tr><td>100</td><td><input type="submit" name="ctl00$ContentPlaceHolder1$grdLearners$ctl02$BtnDel" value="Del" /></td></tr>
    </table>
    """
    rows = extract(grid)
    assert rows[0].control("del") == "ctl00$ContentPlaceHolder1$grdLearners$ctl02$BtnDel"
    assert rows[0].control("missing") is None


def test_find_table_by_id() -> None:
    html = f"<html><body><table id='other'><tr><td>x</td></tr></table>{GRID}</body></html>"
    fragment = find_table(html)
    assert fragment is not None and "KAMAU" in fragment
    assert find_table("<html></html>") is None


def test_page_scope_detects_pager_and_selected_category() -> None:
    html = """
    <select name="ctl00$ContentPlaceHolder1$SelectCat" id="SelectCat">
      <option value="12">Form 1</option>
      <option selected="selected" value="13">Form 2</option>
    </select>
    <a href="javascript:__doPostBack(&#39;ctl00$ContentPlaceHolder1$grdLearners&#39;,&#39;Page$2&#39;)">2</a>
    """
    scope = page_scope(html)
    assert scope.paged is True
    assert scope.selected_category == "form 2"
    assert scope.selected_category_value == "13"


def test_needs_page_size_change() -> None:
    assert needs_page_size_change(PageScope(paged=True)) is True
    assert needs_page_size_change(PageScope(paged=False)) is False
    single = PageScope(paged=False, selected_category="form 1", selected_category_value="12")
    assert needs_page_size_change(single, "form 1") is False
    assert needs_page_size_change(single, "form 2") is True
