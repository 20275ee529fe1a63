from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from modules.common.errors import (
    InvalidCredentialError, InvalidInputError, InvalidStateError, NotFoundError
)
from modules.identities.models.identity import Identity
from modules.pins.services.pin_service import PinService
from modules.signature_requests.models.signature_request import RequestStatus, RequestType
from modules.signature_requests.services.request_tracker import (
    OfflineEntry, RequestTracker, derive_status
)
from modules.signatures.models.signature import SignatureStatus, TargetType
from modules.signatures.services.signature_service import SignatureLedger

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2026, 5, 4, 12, 0, 0)
PINS = {"A": "4821", "B": "5930", "C": "7146", "W1": "2468", "W2": "1357"}


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session():
    with TestingSessionLocal() as s:
        yield s


@pytest.fixture
def tracker(session):
    return RequestTracker(session)


@pytest.fixture
def ledger(session):
    return SignatureLedger(session, token_secret="test-secret")


@pytest.fixture
def workers(session):
    for position, (identity_id, pin) in enumerate(PINS.items()):
        session.add(Identity(id=identity_id, name=f"Trabajador {identity_id}",
                             rut=f"1100000{position}-{position}", enabled=True))
    session.commit()
    service = PinService(session)
    for identity_id, pin in PINS.items():
        service.set_pin(identity_id, pin)
    return list(PINS)


def sign(ledger, identity_id, request_id, now=None, pin=None):
    return ledger.create_signature(
        identity_id, pin or PINS[identity_id], TargetType.REQUEST, request_id=request_id, now=now
    )


# --- derive_status -------------------------------------------------------

def test_derive_pending():
    assert derive_status({"A", "B"}, set(), None, False, NOW) == RequestStatus.PENDING


def test_derive_in_progress():
    assert derive_status({"A", "B"}, {"A"}, None, False, NOW) == RequestStatus.IN_PROGRESS


def test_derive_completed_beats_expired():
    past = NOW - timedelta(days=1)
    assert derive_status({"A", "B"}, {"A", "B"}, past, False, NOW) == RequestStatus.COMPLETED


def test_derive_expired():
    past = NOW - timedelta(minutes=1)
    assert derive_status({"A", "B"}, {"A"}, past, False, NOW) == RequestStatus.EXPIRED
    assert derive_status({"A", "B"}, set(), past, False, NOW) == RequestStatus.EXPIRED


def test_derive_future_deadline_not_expired():
    future = NOW + timedelta(days=1)
    assert derive_status({"A"}, set(), future, False, NOW) == RequestStatus.PENDING


def test_derive_cancelled_dominates():
    past = NOW - timedelta(days=1)
    assert derive_status({"A"}, {"A"}, past, True, NOW) == RequestStatus.CANCELLED


def test_derive_ignores_signers_outside_request():
    assert derive_status({"A"}, {"Z"}, None, False, NOW) == RequestStatus.PENDING


def test_derive_accepts_aware_timestamps():
    deadline = datetime(2026, 5, 4, 8, 0, tzinfo=timezone(timedelta(hours=-4)))  # 12:00 UTC
    assert derive_status({"A"}, set(), deadline, False, NOW + timedelta(seconds=1)) == RequestStatus.EXPIRED
    assert derive_status({"A"}, set(), deadline, False, NOW - timedelta(seconds=1)) == RequestStatus.PENDING


# --- create / get --------------------------------------------------------

def test_create_request_starts_pending(tracker, workers):
    request = tracker.create_request(["A", "B", "A"], request_type=RequestType.CHARLA_5MIN,
                                     requester_id="sup-1", location="Faena norte")
    snapshot = tracker.get(request.id)

    assert snapshot.status == RequestStatus.PENDING
    assert snapshot.required_signer_ids == ["A", "B"]
    assert snapshot.signed_signer_ids == []
    assert request.title == "Charla de 5 Minutos"
    assert request.location == "Faena norte"


def test_create_request_without_signers(tracker):
    with pytest.raises(InvalidInputError):
        tracker.create_request([])


def test_create_request_with_unknown_signer(tracker, workers):
    with pytest.raises(NotFoundError):
        tracker.create_request(["A", "desconocido"])


def test_create_request_with_invalid_type(tracker, workers):
    with pytest.raises(InvalidInputError):
        tracker.create_request(["A"], request_type="CAFE")


def test_get_missing_request(tracker):
    with pytest.raises(NotFoundError):
        tracker.get("no-existe")


# --- completion laws -----------------------------------------------------

def test_completion_even_after_deadline(tracker, ledger, workers):
    request = tracker.create_request(["A", "B", "C"], deadline=NOW + timedelta(hours=1))

    sign(ledger, "A", request.id, now=NOW)
    sign(ledger, "B", request.id, now=NOW)
    assert tracker.get(request.id, now=NOW).status == RequestStatus.IN_PROGRESS

    late = NOW + timedelta(hours=3)
    assert tracker.get(request.id, now=late).status == RequestStatus.EXPIRED

    sign(ledger, "C", request.id, now=late)
    snapshot = tracker.get(request.id, now=late)
    assert snapshot.status == RequestStatus.COMPLETED
    assert snapshot.request.completed_at == late


def test_revocation_removes_completion_credit(tracker, ledger, workers):
    request = tracker.create_request(["A", "B"])
    sig_a = sign(ledger, "A", request.id)
    sign(ledger, "B", request.id)
    assert tracker.get(request.id).status == RequestStatus.COMPLETED

    ledger.dispute(sig_a.id, "firmó por otro", "sup-1")
    # disputed signatures still count
    assert tracker.get(request.id).status == RequestStatus.COMPLETED

    ledger.resolve(sig_a.id, "suplantación", "admin-1", SignatureStatus.REVOKED)
    snapshot = tracker.get(request.id)
    assert snapshot.status == RequestStatus.IN_PROGRESS
    assert snapshot.signed_signer_ids == ["B"]
    assert snapshot.request.status == RequestStatus.IN_PROGRESS
    assert snapshot.request.completed_at is None


def test_revocation_after_deadline_reads_expired(tracker, ledger, workers):
    request = tracker.create_request(["A", "B"], deadline=NOW)
    sig_a = sign(ledger, "A", request.id, now=NOW - timedelta(hours=2))
    sign(ledger, "B", request.id, now=NOW - timedelta(hours=1))

    later = NOW + timedelta(days=1)
    ledger.dispute(sig_a.id, "motivo", "sup-1", now=later)
    ledger.resolve(sig_a.id, "revocar", "admin-1", SignatureStatus.REVOKED, now=later)
    assert tracker.get(request.id, now=later).status == RequestStatus.EXPIRED


def test_revalidated_signature_keeps_credit(tracker, ledger, workers):
    request = tracker.create_request(["A"])
    sig = sign(ledger, "A", request.id)
    ledger.dispute(sig.id, "duda", "sup-1")
    ledger.resolve(sig.id, "confirmada", "admin-1", SignatureStatus.VALID)
    assert tracker.get(request.id).status == RequestStatus.COMPLETED


def test_end_to_end_two_workers(tracker, ledger, workers):
    request = tracker.create_request(["W1", "W2"])
    assert tracker.get(request.id).status == RequestStatus.PENDING

    sign(ledger, "W1", request.id)
    snapshot = tracker.get(request.id)
    assert snapshot.status == RequestStatus.IN_PROGRESS
    assert snapshot.signed_signer_ids == ["W1"]

    with pytest.raises(InvalidCredentialError):
        sign(ledger, "W2", request.id, pin="9753")
    snapshot = tracker.get(request.id)
    assert snapshot.status == RequestStatus.IN_PROGRESS
    assert snapshot.signed_signer_ids == ["W1"]

    sign(ledger, "W2", request.id)
    assert tracker.get(request.id).status == RequestStatus.COMPLETED


def test_recompute_state_repairs_stored_status(session, tracker, ledger, workers):
    request = tracker.create_request(["A"])
    sign(ledger, "A", request.id)

    request.status = RequestStatus.PENDING
    session.commit()

    snapshot = tracker.recompute_state(request.id)
    assert snapshot.status == RequestStatus.COMPLETED
    assert tracker.get_request(request.id).status == RequestStatus.COMPLETED


# --- cancel --------------------------------------------------------------

def test_cancel_is_sticky(tracker, ledger, workers):
    request = tracker.create_request(["A", "B"])
    sign(ledger, "A", request.id)

    snapshot = tracker.cancel(request.id, "Charla reprogramada")
    assert snapshot.status == RequestStatus.CANCELLED
    assert snapshot.request.cancel_reason == "Charla reprogramada"

    with pytest.raises(InvalidStateError, match="cancelada"):
        sign(ledger, "B", request.id)
    assert tracker.get(request.id).status == RequestStatus.CANCELLED
    assert tracker.get(request.id).signed_signer_ids == ["A"]


def test_cancel_default_reason(tracker, workers):
    request = tracker.create_request(["A"])
    assert tracker.cancel(request.id).request.cancel_reason == "Cancelada por el solicitante"


def test_cannot_cancel_completed(tracker, ledger, workers):
    request = tracker.create_request(["A"])
    sign(ledger, "A", request.id)
    with pytest.raises(InvalidStateError, match="completada"):
        tracker.cancel(request.id)


def test_cancel_expired_request(tracker, workers):
    request = tracker.create_request(["A"], deadline=NOW)
    snapshot = tracker.cancel(request.id, now=NOW + timedelta(days=2))
    assert snapshot.status == RequestStatus.CANCELLED


def test_cannot_cancel_twice(tracker, workers):
    request = tracker.create_request(["A"])
    tracker.cancel(request.id)
    with pytest.raises(InvalidStateError):
        tracker.cancel(request.id)


def test_cancel_missing_request(tracker):
    with pytest.raises(NotFoundError):
        tracker.cancel("no-existe")


# --- queries -------------------------------------------------------------

def test_get_pending(tracker, ledger, workers):
    open_request = tracker.create_request(["A", "B"])
    signed_by_a = tracker.create_request(["A", "C"])
    cancelled = tracker.create_request(["A"])
    expired = tracker.create_request(["A"], deadline=NOW - timedelta(days=1))
    tracker.create_request(["B"])

    sign(ledger, "A", signed_by_a.id)
    tracker.cancel(cancelled.id)

    pending = tracker.get_pending("A", now=NOW)
    by_id = {s.request.id: s.status for s in pending}
    assert by_id == {open_request.id: RequestStatus.PENDING, expired.id: RequestStatus.EXPIRED}

    assert [s.request.id for s in tracker.get_pending("C", now=NOW)] == [signed_by_a.id]


def test_get_history(tracker, ledger, workers):
    request = tracker.create_request(["A"])
    doc_sig = ledger.create_signature("A", PINS["A"], TargetType.DOCUMENT, "doc-7", now=NOW)
    req_sig = sign(ledger, "A", request.id, now=NOW + timedelta(minutes=1))

    history = tracker.get_history("A")
    assert [entry.signature.id for entry in history] == [req_sig.id, doc_sig.id]
    assert history[0].request.request.id == request.id
    assert history[0].request.status == RequestStatus.COMPLETED
    assert history[1].request is None


def test_list_requests_filters(tracker, ledger, workers):
    charla = tracker.create_request(["A"], request_type=RequestType.CHARLA_5MIN, requester_id="sup-1")
    epp = tracker.create_request(["A", "B"], request_type=RequestType.ENTREGA_EPP, requester_id="sup-2")
    sign(ledger, "A", epp.id)

    assert [s.request.id for s in tracker.list_requests(requester_id="sup-1")] == [charla.id]
    assert [s.request.id for s in tracker.list_requests(request_type=RequestType.ENTREGA_EPP)] == [epp.id]
    assert [s.request.id for s in tracker.list_requests(status=RequestStatus.IN_PROGRESS)] == [epp.id]


# --- offline batch -------------------------------------------------------

def test_offline_batch_reports_rejections_per_entry(session, tracker, workers):
    signed_at = datetime(2026, 5, 4, 8, 30, 0)
    batch = tracker.process_offline_batch(
        [
            OfflineEntry(rut="11.000.000-0", pin=PINS["A"], signed_at=signed_at),
            OfflineEntry(rut="11000001-1", pin="0001"),
            OfflineEntry(rut="99.999.999-9", pin="4821"),
        ],
        request_type=RequestType.CHARLA_5MIN,
        requester_id="sup-1",
        now=NOW
    )

    assert batch.valid_count == 1
    assert batch.invalid_count == 2
    ok, wrong_pin, unknown = batch.results
    assert ok.success and ok.signature_id and ok.token.startswith("SIG-")
    assert not wrong_pin.success and wrong_pin.error == "PIN incorrecto"
    assert not unknown.success and "no encontrado" in unknown.error

    snapshot = batch.request
    assert snapshot.status == RequestStatus.COMPLETED
    assert snapshot.required_signer_ids == ["A"]
    assert snapshot.signed_signer_ids == ["A"]
    assert snapshot.request.title == "Charla de 5 Minutos"

    stored = tracker.get(snapshot.request.id, now=NOW)
    assert stored.status == RequestStatus.COMPLETED
    assert stored.request.status == RequestStatus.COMPLETED
    assert stored.request.completed_at is not None

    signature = SignatureLedger(session).get(ok.signature_id)
    assert signature.validation_method == "pin_offline"
    assert signature.created_at == signed_at
    assert signature.extra["offline"] is True


def test_offline_batch_all_valid(tracker, workers):
    batch = tracker.process_offline_batch(
        [OfflineEntry(rut=f"1100000{i}-{i}", pin=PINS[w]) for i, w in enumerate(["A", "B", "C"])],
        now=NOW
    )
    assert batch.invalid_count == 0
    assert batch.request.status == RequestStatus.COMPLETED
    assert batch.request.required_signer_ids == ["A", "B", "C"]


def test_offline_batch_disabled_and_duplicate_entries(session, tracker, workers):
    session.get(Identity, "B").enabled = False
    session.commit()

    batch = tracker.process_offline_batch(
        [
            OfflineEntry(rut="11000000-0", pin=PINS["A"]),
            OfflineEntry(rut="11000000-0", pin=PINS["A"]),
            OfflineEntry(rut="11000001-1", pin=PINS["B"]),
        ],
        now=NOW
    )
    assert [r.success for r in batch.results] == [True, False, False]
    assert batch.results[1].error == "Firma duplicada en el lote"
    assert batch.results[2].error == "Trabajador no habilitado"
    assert batch.request.required_signer_ids == ["A"]


def test_offline_batch_without_valid_entries_creates_nothing(tracker, workers):
    batch = tracker.process_offline_batch(
        [OfflineEntry(rut="11000000-0", pin="0001")], now=NOW
    )
    assert batch.request is None
    assert batch.invalid_count == 1
    assert tracker.list_requests(now=NOW) == []


def test_offline_batch_requires_entries(tracker):
    with pytest.raises(InvalidInputError):
        tracker.process_offline_batch([], now=NOW)
