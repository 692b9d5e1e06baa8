"""
BrokerDesk - Approval workflow
Tests: approve / reject / update_status / list_pending, creator invariant,
double-approve guard, best-effort notifications.
Run: cd backend && pytest tests/test_approval_workflow.py -v
"""

import asyncio

import pytest

import config
from models.staging import StagingType
from services.approval_workflow import ApprovalWorkflow
from services.errors import (
    AlreadyApproved,
    InvalidStatus,
    NoCreatorResolvable,
    NotFound,
    TypeMismatch,
    ValidationFailed,
)
from services.notification_gateway import NotificationGateway
from services.staging_store import MongoStagingStore
from tests.conftest import (
    ExplodingGateway,
    _db_op,
    add_staging,
    insurance_form,
    loan_form,
    make_user,
    ticket_form,
)


def _record_count(collection):
    return _db_op(config.db[collection].count_documents({}))


# ═══════════════════════════════════════════════════════════════
# 1. APPROVE
# ═══════════════════════════════════════════════════════════════

class TestApproveLoan:
    def test_scenario_d1_approved_and_leaves_pending(self, store, workflow, external_admin):
        """Pending loan from u1, user m1 linked to u1 -> record created, d1 no longer pending."""
        make_user(firebase_uid="u1", user_id="m1")
        doc_id = add_staging(store, user_id="u1", form_data=loan_form())

        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, external_admin))

        assert result["firestoreDocId"] == doc_id
        assert result["mongoId"]
        pending = _db_op(workflow.list_pending(StagingType.LOAN))
        assert doc_id not in [d["id"] for d in pending["data"]]

    def test_record_fields(self, store, workflow, internal_admin):
        make_user(firebase_uid="u1", user_id="m1")
        doc_id = add_staging(store, user_id="u1")

        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin, "KYC ok"))
        record = _db_op(config.db.loans.find_one({"id": result["mongoId"]}, {"_id": 0}))

        assert record["stagingDocId"] == doc_id
        assert record["userId"] == "m1"
        assert record["createdBy"] == "user"
        assert record["createdById"] == "m1"
        assert record["status"] == "Approved"
        assert record["approvedBy"] == internal_admin.id
        assert record["adminNotes"] == "KYC ok"
        assert record["consent"] is True
        assert record["loanAmount"] == 50000
        assert record["email"] == "a@x.com"

    def test_staging_doc_marked_migrated(self, store, workflow, internal_admin):
        doc_id = add_staging(store, user_id="u1")
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))

        doc = _db_op(store.get(doc_id))
        assert doc.status == "approved"
        assert doc.mongo_id == result["mongoId"]
        assert doc.migrated_at is not None

    def test_created_by_id_never_null(self, store, workflow, internal_admin):
        doc_id = add_staging(store, user_id="unknown-uid")
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        record = _db_op(config.db.loans.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["createdById"] == internal_admin.id
        assert record["createdBy"] == "admin"
        assert record["userId"] is None

    def test_no_creator_keeps_doc_pending(self, store, workflow, external_admin):
        """No user for u1 and no admin account -> NoCreatorResolvable, d1 stays pending."""
        doc_id = add_staging(store, user_id="u1")

        with pytest.raises(NoCreatorResolvable):
            _db_op(workflow.approve(doc_id, StagingType.LOAN, external_admin))

        assert _db_op(store.get(doc_id)).status == "pending"
        assert _record_count("loans") == 0

    def test_not_found(self, workflow, internal_admin):
        with pytest.raises(NotFound):
            _db_op(workflow.approve("missing", StagingType.LOAN, internal_admin))

    def test_type_mismatch(self, store, workflow, internal_admin):
        doc_id = add_staging(store, StagingType.INSURANCE, form_data=insurance_form())
        with pytest.raises(TypeMismatch) as exc:
            _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        assert exc.value.details == {"expected": "loan", "actual": "insurance"}

    def test_second_approve_rejected(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        first = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))

        with pytest.raises(AlreadyApproved) as exc:
            _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))

        assert exc.value.details["mongoId"] == first["mongoId"]
        assert _record_count("loans") == 1

    def test_concurrent_approvals_create_one_record(self, store, workflow, internal_admin):
        doc_id = add_staging(store)

        async def race():
            return await asyncio.gather(
                workflow.approve(doc_id, StagingType.LOAN, internal_admin),
                workflow.approve(doc_id, StagingType.LOAN, internal_admin),
                return_exceptions=True,
            )

        results = _db_op(race())
        successes = [r for r in results if isinstance(r, dict)]
        failures = [r for r in results if isinstance(r, AlreadyApproved)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert _record_count("loans") == 1
        assert _db_op(store.get(doc_id)).mongo_id == successes[0]["mongoId"]

    def test_stale_read_loses_and_leaves_one_record(self, store, records, users, gateway, internal_admin):
        """Second approver read the doc before the first committed."""
        doc_id = add_staging(store)
        stale = _db_op(store.get(doc_id))

        class StaleStore(MongoStagingStore):
            async def get(self, _id):
                return stale

        winner = ApprovalWorkflow(store, records, users, gateway)
        loser = ApprovalWorkflow(StaleStore(config.db), records, users, gateway)

        result = _db_op(winner.approve(doc_id, StagingType.LOAN, internal_admin))
        with pytest.raises(AlreadyApproved):
            _db_op(loser.approve(doc_id, StagingType.LOAN, internal_admin))

        loans = _db_op(config.db.loans.find({}, {"_id": 0}).to_list(10))
        assert [l["id"] for l in loans] == [result["mongoId"]]
        assert _db_op(store.get(doc_id)).mongo_id == result["mongoId"]

    def test_rejected_doc_can_be_approved(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "Blurry ID"))
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        assert _db_op(store.get(doc_id)).status == "approved"
        assert result["mongoId"]


class TestApproveValidation:
    def test_missing_required_field(self, store, workflow, internal_admin):
        form = loan_form()
        del form["loanType"]
        doc_id = add_staging(store, form_data=form)

        with pytest.raises(ValidationFailed) as exc:
            _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))

        fields = [e["field"] for e in exc.value.errors]
        assert "loanType" in fields
        assert exc.value.preview["fullName"] == "A"
        assert exc.value.preview["createdById"] == internal_admin.id
        assert _db_op(store.get(doc_id)).status == "pending"
        assert _record_count("loans") == 0

    def test_invalid_enum(self, store, workflow, internal_admin):
        doc_id = add_staging(store, form_data=loan_form(loanType="Crypto"))
        with pytest.raises(ValidationFailed) as exc:
            _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        assert exc.value.errors[0]["field"] == "loanType"

    def test_consent_not_defaulted_when_disabled(self, store, records, users, gateway, internal_admin):
        strict = ApprovalWorkflow(store, records, users, gateway, field_defaults={})
        doc_id = add_staging(store)
        with pytest.raises(ValidationFailed) as exc:
            _db_op(strict.approve(doc_id, StagingType.LOAN, internal_admin))
        assert [e["field"] for e in exc.value.errors] == ["consent"]

    def test_explicit_consent_is_kept(self, store, workflow, internal_admin):
        doc_id = add_staging(store, form_data=loan_form(consent=False))
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        record = _db_op(config.db.loans.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["consent"] is False

    def test_insurance_age_bounds(self, store, workflow, internal_admin):
        doc_id = add_staging(store, StagingType.INSURANCE, form_data=insurance_form(age=12))
        with pytest.raises(ValidationFailed) as exc:
            _db_op(workflow.approve(doc_id, StagingType.INSURANCE, internal_admin))
        assert exc.value.errors[0]["field"] == "age"

    def test_numeric_text_fields_stored_as_strings(self, store, workflow, internal_admin):
        doc_id = add_staging(store, form_data=loan_form(phone=9876543210, monthlyIncome=45000, tenure=24))
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        record = _db_op(config.db.loans.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["phone"] == "9876543210"
        assert record["monthlyIncome"] == "45000"
        assert record["tenure"] == "24"

    def test_numeric_coverage_amount(self, store, workflow, internal_admin):
        doc_id = add_staging(store, StagingType.INSURANCE, form_data=insurance_form(coverageAmount=500000))
        result = _db_op(workflow.approve(doc_id, StagingType.INSURANCE, internal_admin))
        record = _db_op(config.db.insurances.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["coverageAmount"] == "500000"


class TestApproveInsurance:
    def test_insurance_approved(self, store, workflow, internal_admin):
        doc_id = add_staging(store, StagingType.INSURANCE, form_data=insurance_form(remarks="Diabetic"))
        result = _db_op(workflow.approve(doc_id, StagingType.INSURANCE, internal_admin))
        record = _db_op(config.db.insurances.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["insuranceType"] == "Health Insurance"
        assert record["remarks"] == "Diabetic"
        assert record["createdById"] == internal_admin.id


class TestApproveTicket:
    def test_ticket_defaults(self, store, workflow, external_admin):
        doc_id = add_staging(store, StagingType.TICKET, form_data=ticket_form())
        result = _db_op(workflow.approve_ticket(doc_id, external_admin))

        record = _db_op(config.db.tickets.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["ticketNumber"] == "TKT-000001"
        assert result["ticketNumber"] == "TKT-000001"
        assert record["priority"] == "Medium"
        assert record["status"] == "Open"
        assert record["userId"] == "u1"
        assert record["loanId"] is None

    def test_ticket_numbers_increment(self, store, workflow, external_admin):
        first = add_staging(store, StagingType.TICKET, form_data=ticket_form())
        second = add_staging(store, StagingType.TICKET, form_data=ticket_form(subject="Foreclosure"))
        _db_op(workflow.approve_ticket(first, external_admin))
        result = _db_op(workflow.approve_ticket(second, external_admin, priority="urgent"))
        record = _db_op(config.db.tickets.find_one({"id": result["mongoId"]}, {"_id": 0}))
        assert record["ticketNumber"] == "TKT-000002"
        assert record["priority"] == "Urgent"

    def test_ticket_without_subject(self, store, workflow, external_admin):
        doc_id = add_staging(store, StagingType.TICKET, form_data={"description": "help"})
        with pytest.raises(ValidationFailed):
            _db_op(workflow.approve_ticket(doc_id, external_admin))
        assert _db_op(store.get(doc_id)).status == "pending"

    def test_ticket_double_approve(self, store, workflow, external_admin):
        doc_id = add_staging(store, StagingType.TICKET, form_data=ticket_form())
        _db_op(workflow.approve_ticket(doc_id, external_admin))
        with pytest.raises(AlreadyApproved):
            _db_op(workflow.approve_ticket(doc_id, external_admin))
        assert _record_count("tickets") == 1


# ═══════════════════════════════════════════════════════════════
# 2. REJECT
# ═══════════════════════════════════════════════════════════════

class TestReject:
    def test_reject_with_reason(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        result = _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "Insufficient income proof"))

        assert result == {"firestoreDocId": doc_id}
        doc = _db_op(store.get(doc_id))
        assert doc.status == "rejected"
        assert doc.rejection_reason == "Insufficient income proof"
        assert doc.rejected_by == internal_admin.id
        assert doc.rejected_at is not None
        assert _record_count("loans") == 0

    def test_reject_without_reason(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin))
        assert _db_op(store.get(doc_id)).rejection_reason == "Not approved"
        assert _record_count("loans") == 0

    def test_reject_is_idempotent(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "x"))
        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "x"))
        assert _db_op(store.get(doc_id)).status == "rejected"

    def test_reject_approved_refused(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        with pytest.raises(AlreadyApproved):
            _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin))
        assert _db_op(store.get(doc_id)).status == "approved"

    def test_reject_type_mismatch(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        with pytest.raises(TypeMismatch):
            _db_op(workflow.reject(doc_id, StagingType.INSURANCE, internal_admin))


# ═══════════════════════════════════════════════════════════════
# 3. NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════

class TestNotifications:
    def test_rejection_kept_in_history(self, store, records, users, channel, history, internal_admin):
        gateway = NotificationGateway([channel], history=history)
        workflow = ApprovalWorkflow(store, records, users, gateway)
        doc_id = add_staging(store, user_id="u1")

        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "Income too low"))

        entries = _db_op(history.list_for_topic("user_u1"))
        assert [e["type"] for e in entries] == ["loan_rejected"]
        assert entries[0]["data"]["reason"] == "Income too low"

    def test_approval_notifies_submitter_topic(self, store, workflow, channel, internal_admin):
        doc_id = add_staging(store, user_id="u1")
        result = _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))

        assert len(channel.sent) == 1
        sent = channel.sent[0]
        assert sent.topic == "user_u1"
        assert sent.title == "✅ Loan Approved"
        assert sent.data["loanId"] == result["mongoId"]
        assert sent.data["firestoreDocId"] == doc_id

    def test_rejection_notifies_with_reason(self, store, workflow, channel, internal_admin):
        doc_id = add_staging(store, user_id="u1")
        _db_op(workflow.reject(doc_id, StagingType.LOAN, internal_admin, "Low CIBIL score"))
        assert channel.sent[0].body == "Low CIBIL score"
        assert channel.sent[0].data["type"] == "loan_rejected"

    def test_validation_failure_sends_nothing(self, store, workflow, channel, internal_admin):
        doc_id = add_staging(store, form_data={"fullName": "A"})
        with pytest.raises(ValidationFailed):
            _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        assert channel.sent == []

    def test_throwing_gateway_does_not_fail_approve(self, store, records, users, internal_admin):
        gateway = ExplodingGateway()
        wf = ApprovalWorkflow(store, records, users, gateway)
        doc_id = add_staging(store)

        result = _db_op(wf.approve(doc_id, StagingType.LOAN, internal_admin))

        assert gateway.calls == 1
        assert result["firestoreDocId"] == doc_id
        assert _db_op(store.get(doc_id)).status == "approved"

    def test_throwing_gateway_does_not_fail_reject(self, store, records, users, internal_admin):
        gateway = ExplodingGateway()
        wf = ApprovalWorkflow(store, records, users, gateway)
        doc_id = add_staging(store)

        _db_op(wf.reject(doc_id, StagingType.LOAN, internal_admin))
        assert _db_op(store.get(doc_id)).status == "rejected"

    def test_background_tasks_deferred(self, store, records, users, gateway, channel, internal_admin):
        from fastapi import BackgroundTasks

        tasks = BackgroundTasks()
        wf = ApprovalWorkflow(store, records, users, gateway, tasks=tasks)
        doc_id = add_staging(store)
        _db_op(wf.approve(doc_id, StagingType.LOAN, internal_admin))

        assert channel.sent == []
        assert len(tasks.tasks) == 1
        _db_op(tasks())
        assert len(channel.sent) == 1


# ═══════════════════════════════════════════════════════════════
# 4. STATUS & LISTING
# ═══════════════════════════════════════════════════════════════

class TestUpdateStatus:
    def test_pending_to_processing(self, store, workflow, channel, internal_admin):
        doc_id = add_staging(store)
        result = _db_op(workflow.update_status(doc_id, "processing", internal_admin))
        assert result == {"firestoreDocId": doc_id, "status": "processing"}
        assert _db_op(store.get(doc_id)).status == "processing"
        assert channel.sent == []
        assert _record_count("loans") == 0

    def test_unknown_status(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        with pytest.raises(InvalidStatus):
            _db_op(workflow.update_status(doc_id, "archived", internal_admin))

    def test_approved_only_through_approve(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        with pytest.raises(InvalidStatus):
            _db_op(workflow.update_status(doc_id, "approved", internal_admin))
        assert _db_op(store.get(doc_id)).status == "pending"

    def test_approved_doc_cannot_move(self, store, workflow, internal_admin):
        doc_id = add_staging(store)
        _db_op(workflow.approve(doc_id, StagingType.LOAN, internal_admin))
        with pytest.raises(AlreadyApproved):
            _db_op(workflow.update_status(doc_id, "pending", internal_admin))

    def test_missing_doc(self, workflow, internal_admin):
        with pytest.raises(NotFound):
            _db_op(workflow.update_status("nope", "processing", internal_admin))


class TestListPending:
    def test_grouped_with_stats(self, store, workflow):
        add_staging(store)
        add_staging(store, StagingType.INSURANCE, form_data=insurance_form())
        add_staging(store, StagingType.TICKET, form_data=ticket_form())
        add_staging(store, status="processing")

        result = _db_op(workflow.list_pending())
        assert result["stats"] == {"total": 3, "loans": 1, "insurances": 1, "tickets": 1, "chats": 0}
        assert len(result["data"]["loans"]) == 1
        assert result["data"]["insurances"][0]["type"] == "insurance"

    def test_by_type(self, store, workflow):
        doc_id = add_staging(store)
        add_staging(store, StagingType.TICKET, form_data=ticket_form())
        result = _db_op(workflow.list_pending(StagingType.LOAN))
        assert result["count"] == 1
        assert result["data"][0]["id"] == doc_id


class TestAudit:
    def test_actions_logged(self, store, workflow, internal_admin):
        approved = add_staging(store)
        rejected = add_staging(store)
        _db_op(workflow.approve(approved, StagingType.LOAN, internal_admin))
        _db_op(workflow.reject(rejected, StagingType.LOAN, internal_admin, "dup"))

        events = _db_op(config.db.event_log.find({}, {"_id": 0}).to_list(10))
        actions = {e["action"]: e for e in events}
        assert set(actions) == {"approve_loan", "reject_loan"}
        assert actions["approve_loan"]["entity_id"] == approved
        assert actions["approve_loan"]["user"] == internal_admin.id
        assert actions["reject_loan"]["details"]["reason"] == "dup"
