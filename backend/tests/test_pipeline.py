import itertools
from datetime import timedelta

import pytest

from conftest import NOW, FakeAnalyzer, FakeDispatcher, FakeFetcher, make_analysis, policy_text

from stackdrift.models import Change, Document, Snapshot, Vendor
from stackdrift.repositories import PersistenceError, PostgresPolicyRepository
from stackdrift.services.analyzer import FALLBACK_SUMMARY, SemanticAnalyzer
from stackdrift.services.differ import fingerprint
from stackdrift.services.fetcher import FetchError
from stackdrift.services.llm_client import LLMCallError
from stackdrift.services.pipeline import (
    FULL_REPLACEMENT_SUMMARY,
    ChangeNotFoundError,
    EmptyDiffError,
    EmptySnapshotError,
    SnapshotNotFoundError,
)
from stackdrift.services.safety_nets import OutcomeStatus

OLD_TEXT = policy_text(10)
NEW_TEXT = policy_text(9) + " Clause 99 lets us suspend accounts without notice."


def _document_with_baseline(repository, fetcher, new_text=NEW_TEXT, old_text=OLD_TEXT, age=timedelta(days=1)):
    document = repository.add_document()
    old = repository.add_snapshot(document, old_text, NOW - age)
    fetcher.pages[document.url] = new_text
    return document, old


def _with_prior_change(repository, document, old):
    """Give the document history so first-scan calibration does not apply."""
    earlier = repository.add_snapshot(document, old.content, old.fetched_at - timedelta(days=1))
    repository.add_change(document, earlier, old)


def test_first_fetch_stores_initial_snapshot(repository, fetcher, analyzer, make_pipeline):
    document = repository.add_document()
    fetcher.pages[document.url] = OLD_TEXT

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.INITIAL_SNAPSHOT
    assert len(repository.snapshots_for(document)) == 1
    assert document.last_checked_at == NOW
    assert analyzer.calls == []
    assert repository.changes == {}


def test_short_content_is_fetch_empty_without_writes(repository, fetcher, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher, new_text="Access denied")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.FETCH_EMPTY
    assert outcome.content_length == len("Access denied")
    assert len(repository.snapshots_for(document)) == 1
    assert document.last_checked_at is None


def test_identical_fingerprint_is_no_change(repository, fetcher, analyzer, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher, new_text=OLD_TEXT)

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.NO_CHANGE
    assert len(repository.snapshots_for(document)) == 1
    assert document.last_checked_at == NOW
    assert document.last_changed_at is None
    assert repository.commits == 1
    assert analyzer.calls == []


def test_changed_document_is_recorded_and_notified(repository, fetcher, analyzer, dispatcher, make_pipeline):
    document, old = _document_with_baseline(repository, fetcher)
    _with_prior_change(repository, document, old)
    analyzer.analysis = make_analysis("medium", risk_bucket="export")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    assert outcome.risk_level == "medium"
    change = repository.get_change(outcome.change_id)
    assert change.old_snapshot_id == old.id
    assert change.new_snapshot_id == repository.get_latest_snapshot(document.id).id
    assert change.risk_priority == "medium"
    assert change.categories == ["export"]
    assert change.is_noise is False
    assert change.notified is True
    assert document.last_changed_at == NOW

    call = analyzer.calls[0]
    assert call["document_label"] == "Acme - Terms of Service"
    assert call["added"] == ["Clause 99 lets us suspend accounts without notice"]
    assert call["removed"] == ["Clause 9 describes how the service handles customer accounts"]

    [payload] = dispatcher.payloads
    assert payload.change_id == change.id
    assert payload.severity == "medium"
    assert payload.diff_url == f"https://app.example/dashboard/history?change={change.id}"


def test_noise_is_stored_as_low_without_notification(repository, fetcher, analyzer, dispatcher, make_pipeline):
    document, old = _document_with_baseline(repository, fetcher)
    _with_prior_change(repository, document, old)
    analyzer.analysis = make_analysis("high", is_noise=True)

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.NOISE
    change = repository.get_change(outcome.change_id)
    assert change.is_noise is True
    assert change.risk_level == "low"
    assert change.risk_priority == "low"
    assert change.notified is False
    assert dispatcher.payloads == []


@pytest.mark.parametrize(
    "analysis",
    [make_analysis("low"), make_analysis("medium", is_noise=True)],
    ids=["low-risk", "noise"],
)
def test_first_diff_is_calibrated_away(repository, fetcher, analyzer, dispatcher, make_pipeline, analysis):
    document, _ = _document_with_baseline(repository, fetcher)
    analyzer.analysis = analysis

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.FIRST_SCAN_CALIBRATION
    assert repository.changes_for(document) == []
    assert len(repository.snapshots_for(document)) == 2
    assert document.last_changed_at == NOW
    assert dispatcher.payloads == []


def test_first_diff_with_medium_risk_is_a_change(repository, fetcher, analyzer, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher)
    analyzer.analysis = make_analysis("medium")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED


def test_low_risk_after_history_is_a_change(repository, fetcher, analyzer, dispatcher, make_pipeline):
    document, old = _document_with_baseline(repository, fetcher)
    _with_prior_change(repository, document, old)
    analyzer.analysis = make_analysis("low")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    assert repository.get_change(outcome.change_id).notified is False
    assert dispatcher.payloads == []


def test_baseline_older_than_thirty_days_is_reset(repository, fetcher, analyzer, dispatcher, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher, age=timedelta(days=30, seconds=1))

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.STALE_BASELINE_RESET
    assert len(repository.snapshots_for(document)) == 2
    assert document.last_changed_at == NOW
    assert analyzer.calls == []
    assert repository.changes_for(document) == []
    assert dispatcher.payloads == []


def test_baseline_exactly_thirty_days_old_is_compared(repository, fetcher, analyzer, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher, age=timedelta(days=30))
    analyzer.analysis = make_analysis("medium")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    assert len(analyzer.calls) == 1


@pytest.mark.parametrize(
    "old_count, kept, added, expected",
    [
        # 101 changed sentences, every sentence replaced
        (50, 0, 51, OutcomeStatus.FULL_REPLACEMENT),
        # 100 changed sentences is not above the floor
        (50, 0, 50, OutcomeStatus.CHANGED),
        # 122 of 150 sentences changed, ratio just above 0.8
        (150, 89, 61, OutcomeStatus.FULL_REPLACEMENT),
        # 120 of 150 sentences changed, ratio exactly 0.8
        (150, 90, 60, OutcomeStatus.CHANGED),
    ],
)
def test_full_replacement_thresholds(
    repository, fetcher, analyzer, make_pipeline, old_count, kept, added, expected
):
    new_text = " ".join([policy_text(kept), policy_text(added, prefix="Section")]).strip()
    document, _ = _document_with_baseline(
        repository, fetcher, old_text=policy_text(old_count), new_text=new_text
    )
    analyzer.analysis = make_analysis("medium")

    outcome = make_pipeline().process_document(document)

    assert outcome.status == expected


def test_full_replacement_keeps_audit_record_without_alert(repository, fetcher, analyzer, dispatcher, make_pipeline):
    document, old = _document_with_baseline(
        repository, fetcher, old_text=policy_text(120), new_text=policy_text(120, prefix="Artikel")
    )

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.FULL_REPLACEMENT
    assert outcome.change_ratio == 2.0
    [change] = repository.changes_for(document)
    assert change.summary == FULL_REPLACEMENT_SUMMARY
    assert change.is_noise is True
    assert change.risk_level == "low"
    assert change.old_snapshot_id == old.id
    assert document.last_changed_at == NOW
    assert analyzer.calls == []
    assert dispatcher.payloads == []


def test_fetch_error_becomes_error_outcome(repository, fetcher, make_pipeline):
    document = repository.add_document()
    fetcher.pages[document.url] = FetchError(document.url, "HTTP 503", status_code=503)

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.ERROR
    assert "HTTP 503" in outcome.error
    assert repository.rollbacks == 1
    assert document.last_checked_at is None


def test_snapshot_survives_failed_change_insert(repository, fetcher, analyzer, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher)
    analyzer.analysis = make_analysis("high")
    repository.fail_create_change = True

    outcome = make_pipeline().process_document(document)

    assert outcome.status == OutcomeStatus.ERROR
    assert len(repository.snapshots_for(document)) == 2
    assert repository.commits >= 1
    assert repository.rollbacks == 1


def test_dispatch_failure_leaves_change_unnotified(repository, fetcher, analyzer, make_pipeline):
    document, _ = _document_with_baseline(repository, fetcher)
    analyzer.analysis = make_analysis("high")

    pipeline = make_pipeline(dispatcher=FakeDispatcher(error=RuntimeError("smtp down")))
    outcome = pipeline.process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    assert repository.get_change(outcome.change_id).notified is False


class _NotifiedFlagFails(PostgresPolicyRepository):
    def update_change(self, change_id, **fields):
        if "notified" in fields:
            raise PersistenceError("update of changes failed")
        super().update_change(change_id, **fields)


def test_change_is_kept_when_notified_flag_cannot_be_written(db_session, analyzer, dispatcher, make_pipeline):
    vendor = Vendor(name="Acme")
    document = Document(vendor=vendor, doc_type="tos", url="https://acme.example/tos")
    db_session.add_all([vendor, document])
    db_session.flush()
    db_session.add(
        Snapshot(
            document_id=document.id,
            vendor_id=vendor.id,
            content_hash=fingerprint(OLD_TEXT),
            content=OLD_TEXT,
            fetched_at=NOW - timedelta(days=1),
        )
    )
    db_session.commit()
    analyzer.analysis = make_analysis("high")
    pipeline = make_pipeline(
        repository=_NotifiedFlagFails(db_session),
        fetcher=FakeFetcher({document.url: NEW_TEXT}),
    )

    outcome = pipeline.process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    [payload] = dispatcher.payloads
    stored = db_session.get(Change, outcome.change_id)
    assert stored is not None
    assert payload.change_id == stored.id
    assert stored.notified is False


def test_batch_isolates_failures(repository, fetcher, analyzer, make_pipeline):
    broken = repository.add_document(vendor_name="Broken")
    fetcher.pages[broken.url] = FetchError(broken.url, "timeout")
    healthy = repository.add_document(vendor_name="Healthy")
    fetcher.pages[healthy.url] = OLD_TEXT
    inactive = repository.add_document(vendor_name="Gone", vendor_active=False)

    result = make_pipeline().run_batch()

    statuses = {o.document: o.status for o in result.outcomes}
    assert statuses == {
        "Broken - Terms of Service": OutcomeStatus.ERROR,
        "Healthy - Terms of Service": OutcomeStatus.INITIAL_SNAPSHOT,
    }
    assert inactive.url not in fetcher.calls
    assert result.deferred == []


def test_batch_defers_documents_after_budget(repository, fetcher, make_pipeline):
    documents = [repository.add_document(vendor_name=f"Vendor{i}") for i in range(3)]
    for document in documents:
        fetcher.pages[document.url] = OLD_TEXT
    ticks = itertools.chain([0.0, 0.0, 11.0], itertools.repeat(11.0))

    result = make_pipeline(monotonic=lambda: next(ticks)).run_batch(budget_seconds=10)

    assert result.checked == 1
    assert result.deferred == [documents[1].id, documents[2].id]
    assert result.to_dict()["deferred"] == 2
    assert fetcher.calls == [documents[0].url]


def test_policy_change_end_to_end_with_model_unavailable(repository, dispatcher, make_pipeline):
    preamble = (
        "These terms govern access to the Acme service. "
        "Please read them carefully before signing up. "
        "Questions about these terms can be sent to the legal team by email. "
        "The company may update these terms from time to time. "
    )
    old_text = preamble + "We may share your data with partners. Liability is limited to fees paid."
    new_text = (
        preamble
        + "We may share your data with affiliates. "
        + "Liability is capped at three months of fees paid."
    )

    class UnavailableModel:
        def complete(self, prompt: str) -> str:
            raise LLMCallError("Anthropic returned HTTP 400", retryable=False, status_code=400)

    document = repository.add_document()
    repository.add_snapshot(document, old_text, NOW - timedelta(days=1))
    pipeline = make_pipeline(
        fetcher=FakeFetcher({document.url: new_text}),
        analyzer=SemanticAnalyzer(UnavailableModel(), sleep=lambda _: None),
    )

    outcome = pipeline.process_document(document)

    assert outcome.status == OutcomeStatus.CHANGED
    assert outcome.risk_level == "high"
    change = repository.get_change(outcome.change_id)
    assert change.summary == FALLBACK_SUMMARY
    assert change.analysis_failed is True
    assert change.risk_bucket == "ownership"
    assert change.risk_priority == "critical"
    assert change.categories == ["ownership"]
    [payload] = dispatcher.payloads
    assert payload.severity == "critical"
    assert payload.title == "Acme - Terms of Service – Ownership & IP change detected"
    assert change.notified is True


def _stored_change(repository, old_text=OLD_TEXT, new_text=NEW_TEXT):
    document = repository.add_document()
    old = repository.add_snapshot(document, old_text, NOW - timedelta(days=2))
    new = repository.add_snapshot(document, new_text, NOW - timedelta(days=1))
    change = repository.add_change(
        document, old, new, summary="Stale summary.", analysis_failed=True, risk_level="high"
    )
    return document, change


def test_reanalyze_overwrites_analysis_only(repository, analyzer, make_pipeline):
    _, change = _stored_change(repository)
    old_snapshot_id, detected_at = change.old_snapshot_id, change.detected_at
    analyzer.analysis = make_analysis("medium", summary="Accounts can now be suspended.")

    result = make_pipeline().reanalyze_change(change.id)

    assert result.summary == "Accounts can now be suspended."
    assert result.analysis_failed is False
    assert change.summary == "Accounts can now be suspended."
    assert change.risk_level == "medium"
    assert change.analysis_failed is False
    assert change.old_snapshot_id == old_snapshot_id
    assert change.detected_at == detected_at
    assert change.notified is True
    assert analyzer.calls[0]["document_label"] == "Acme - Terms of Service"


def test_reanalyze_normalizes_noise(repository, analyzer, make_pipeline):
    _, change = _stored_change(repository)
    analyzer.analysis = make_analysis("high", is_noise=True)

    result = make_pipeline().reanalyze_change(change.id)

    assert result.risk_level == "low"
    assert change.risk_priority == "low"
    assert change.is_noise is True


def test_failed_reanalysis_keeps_completed_analysis(repository, analyzer, make_pipeline):
    document = repository.add_document()
    old = repository.add_snapshot(document, OLD_TEXT, NOW - timedelta(days=2))
    new = repository.add_snapshot(document, NEW_TEXT, NOW - timedelta(days=1))
    change = repository.add_change(document, old, new, summary="Accounts can be suspended.", analysis_failed=False)
    analyzer.analysis = make_analysis("high", analysis_failed=True, summary=FALLBACK_SUMMARY)

    result = make_pipeline().reanalyze_change(change.id)

    assert result.analysis_failed is True
    assert result.summary == "Accounts can be suspended."
    assert change.summary == "Accounts can be suspended."
    assert change.risk_level == "medium"
    assert change.analysis_failed is False


def test_reanalyze_preconditions(repository, make_pipeline):
    pipeline = make_pipeline()

    with pytest.raises(ChangeNotFoundError):
        pipeline.reanalyze_change("missing")

    _, same = _stored_change(repository, new_text=OLD_TEXT)
    with pytest.raises(EmptyDiffError):
        pipeline.reanalyze_change(same.id)

    _, empty = _stored_change(repository, new_text="")
    with pytest.raises(EmptySnapshotError):
        pipeline.reanalyze_change(empty.id)

    _, orphan = _stored_change(repository)
    repository.snapshots.remove(repository.get_snapshot(orphan.new_snapshot_id))
    with pytest.raises(SnapshotNotFoundError):
        pipeline.reanalyze_change(orphan.id)
    assert orphan.summary == "Stale summary."


def test_diff_for_change(repository, make_pipeline):
    _, change = _stored_change(repository)

    result = make_pipeline().diff_for_change(change.id)

    assert result.added == ["Clause 99 lets us suspend accounts without notice"]
    assert result.removed == ["Clause 9 describes how the service handles customer accounts"]
