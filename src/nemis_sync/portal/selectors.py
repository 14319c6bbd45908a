from __future__ import annotations

from dataclasses import dataclass


_CP = "ctl00$ContentPlaceHolder1$"
_CP_ID = "ctl00_ContentPlaceHolder1_"


def field(name: str) -> str:
    """Form field name inside the master page content placeholder."""
    return _CP + name


def element_id(name: str) -> str:
    """Rendered element id inside the master page content placeholder."""
    return _CP_ID + name


@dataclass(frozen=True)
class PortalPaths:
    """
    Every page the engine touches. The portal is a fixed set of WebForms pages;
    keep all paths here for easy maintenance.
    """

    home: str = "/"
    default: str = "/Default.aspx"
    login: str = "/Login.aspx"

    institution: str = "/Institution/Institution.aspx"

    list_learners: str = "/Learner/Listlearners.aspx"
    capture_biodata: str = "/Learner/alearner.aspx"
    student_index: str = "/Learner/Studindex.aspx"
    student_index_request: str = "/Learner/Studindexreq.aspx"
    student_index_check: str = "/Learner/Studindexchk.aspx"
    transfer_receive: str = "/Learner/StudReceive.aspx"
    list_requested: str = "/Learner/Liststudreq.aspx"
    list_approved: str = "/Learner/Liststudreqa.aspx"
    list_continuing_requests: str = "/Learner/Listadmrequestsskul.aspx"
    list_pending_continuing: str = "/Learner/Listadmrequestsskulapp.aspx"

    list_selected: str = "/Admission/Listlearners.aspx"
    list_admitted: str = "/Admission/Listlearnersrep.aspx"

    search_learner_api: str = "/generic/api/Learner/StudUpi/{identifier}"


@dataclass(frozen=True)
class PortalSelectors:
    """
    Element ids and form field names. The portal's markup may change over time;
    nothing outside this module should spell an ASP.NET control name.
    """

    # Login form
    login_username: str = field("Login1$UserName")
    login_password: str = field("Login1$Password")
    login_button: str = field("Login1$LoginButton")

    # Shared controls
    script_manager: str = field("ScriptManager1")
    update_panel: str = field("UpdatePanel1")
    update_panel_id: str = element_id("UpdatePanel1")
    grid_id: str = element_id("grdLearners")
    grid_target: str = field("grdLearners")
    records_per_page: str = field("SelectRecs")
    category: str = field("SelectCat")
    category_id: str = "SelectCat"
    category_rendered_id: str = element_id("SelectCat")
    birth_certificate_filter: str = field("SelectBC")
    category_secondary: str = field("SelectCat2")
    message_label_id: str = element_id("ErrorMessage")
    add_learner_button: str = field("Button1")
    save_learner_button: str = field("Button2")

    # Listlearners row action anchor, e.g. ctl00_ContentPlaceHolder1_grdLearners_ctl03_BtnView
    learner_view_anchor_pattern: str = r"grdLearners_ctl(\d+)_BtnView"
    learner_view_target_template: str = "ctl00$ContentPlaceHolder1$grdLearners$ctl{n:02d}$BtnView"

    # Studindex (admit / request placement)
    can_admit_flag_id: str = "txtCanAdmt"
    can_request_flag_id: str = "txtCanReq"
    admit_button: str = field("BtnAdmit")

    # Bio-data capture (alearner.aspx)
    county_select: str = field("ddlcounty")
    sub_county_select: str = field("ddlsubcounty")
    conflict_dialog_id: str = element_id("MyDiag")
    ignore_option: str = field("optignore")
    ignore_option_yes: str = "optignoreyes"
    new_upi_message_id: str = element_id("instmessage")
    upi_input_id: str = "UPI"
    alert_selector: str = ".alert"
    save_biodata_button: str = field("btnUsers2")

    # Transfer (StudReceive.aspx)
    transfer_reason: str = field("DrpReason")
    transfer_search_command: str = field("SearchCmd")
    transfer_remark: str = field("txtRemark")
    transfer_search: str = field("txtSearch")

    # Listlearnersrep row actions (positional event arguments)
    capture_with_bc_action: str = "ActionFOS${i}"
    capture_without_bc_action: str = "ActionFOSWBC${i}"
    reset_capture_action: str = "ActionReset${i}"
    undo_admission_action: str = "ActionUNDO${i}"


PATHS = PortalPaths()
SELECTORS = PortalSelectors()
