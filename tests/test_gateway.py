"""Test the authority gateway lifecycle and read API."""

import hashlib
import os
import tempfile
import threading

import pytest

from entity_authority import (
    AuthorityGateway,
    GatewayState,
    GatewayStateError,
    NotInitializedError,
    ParseIncompleteError,
    SourceUnavailableError,
)
from entity_authority.models import canonical_json


MODEL_TEXT = """erDiagram
    ACCOUNT {
        int AccountID PK
    }
    CONTACT {
        int ContactID PK
        int AccountID FK
    }
    ACCOUNT ||--o{ CONTACT : "has"
"""


def write_model(text):
    with tempfile.NamedTemporaryFile(mode='w', suffix=".mmd", delete=False, encoding='utf-8') as f:
        f.write(text)
        return f.name


@pytest.fixture
def model_file():
    """Create a minimal model file for testing."""
    file_path = write_model(MODEL_TEXT)
    yield file_path
    # Cleanup
    if os.path.exists(file_path):
        os.remove(file_path)


@pytest.fixture
def events():
    return []


@pytest.fixture
def gateway(model_file, events):
    gateway = AuthorityGateway(model_file, audit_observer=events.append)
    gateway.initialize()
    yield gateway
    gateway.close()


def test_end_to_end_scenario(gateway):
    """Names, keys, relationships and provenance of the minimal model."""
    assert gateway.get_all_entity_names() == ["ACCOUNT", "CONTACT"]

    contact = gateway.get_entity("CONTACT")
    assert "AccountID" in contact["foreign_keys"]
    assert contact["primary_key"] == "ContactID"

    relationships = gateway.get_entity_relationships("ACCOUNT")
    assert len(relationships) == 1
    assert relationships[0]["type"] == "one-to-many"
    assert relationships[0]["from"] == "ACCOUNT"
    assert relationships[0]["to"] == "CONTACT"

    result = gateway.validate_entity_provenance("WORK_ORDER")
    assert result["valid"] is False
    assert "not found" in result["reason"]


def test_entity_relationship_sets(gateway):
    assert gateway.get_entity("ACCOUNT")["relationships"]["children"] == ["CONTACT"]
    assert gateway.get_entity("CONTACT")["relationships"]["parents"] == ["ACCOUNT"]


def test_valid_entity_provenance(gateway):
    result = gateway.validate_entity_provenance("ACCOUNT")

    assert result["valid"] is True
    assert result["signature"] == gateway.get_entity("ACCOUNT")["signature"]
    assert result["provenance"]["source"] == os.path.basename(gateway.source_path)


def test_absent_reads_return_none(gateway):
    """Read APIs treat absence as no data, not as an error."""
    assert gateway.get_entity("WORK_ORDER") is None
    assert gateway.get_entity_field("ACCOUNT", "Missing") is None
    assert gateway.get_entity_field("WORK_ORDER", "AccountID") is None
    assert gateway.get_entity_relationships("WORK_ORDER") is None


def test_get_entity_field(gateway):
    account_field = gateway.get_entity_field("CONTACT", "AccountID")

    assert account_field["type"] == "integer"
    assert account_field["is_foreign_key"] is True
    assert account_field["provenance"]["entity_signature"] == gateway.get_entity("CONTACT")["signature"]


def test_reads_return_copies(gateway):
    """Mutating a returned entity does not change the loaded graph."""
    entity = gateway.get_entity("CONTACT")
    entity["foreign_keys"].append("Injected")
    entity["fields"].pop("ContactID")

    fresh = gateway.get_entity("CONTACT")
    assert fresh["foreign_keys"] == ["AccountID"]
    assert "ContactID" in fresh["fields"]


def test_detect_fabricated_entities(gateway):
    result = gateway.detect_fabricated_entities(["ACCOUNT", "pestType", "CONTACT"])

    assert [item["entity"] for item in result["valid"]] == ["ACCOUNT", "CONTACT"]
    assert [item["entity"] for item in result["fabricated"]] == ["pestType"]
    assert result["summary"]["fabricated_count"] == 1


def test_field_and_relationship_validation(gateway):
    assert gateway.validate_entity_field("ACCOUNT", "AccountID")["valid"] is True
    assert gateway.validate_entity_field("ACCOUNT", "fabricatedField")["code"] == "field_not_found"
    assert gateway.validate_relationship("ACCOUNT-CONTACT-has")["valid"] is True


def test_certificate_round_trip(gateway):
    certificate = gateway.generate_entity_certificate("ACCOUNT")

    body = {key: value for key, value in certificate.items() if key != "certificate_hash"}
    recomputed = hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()

    assert recomputed == certificate["certificate_hash"]
    assert gateway.verify_certificate(certificate)
    assert gateway.generate_entity_certificate("pestType") is None


def test_validation_stats(gateway):
    gateway.validate_entity_provenance("ACCOUNT")
    gateway.validate_entity_provenance("pestType")

    stats = gateway.get_validation_stats()
    assert stats["total_validations"] == 2
    assert stats["success_rate"] == pytest.approx(50.0)


def test_health_status(gateway):
    health = gateway.get_health_status()

    assert health["initialized"] is True
    assert health["state"] == "ready"
    assert health["entity_count"] == 2
    assert health["relationship_count"] == 1
    assert health["checksum"] == hashlib.sha256(MODEL_TEXT.encode("utf-8")).hexdigest()
    assert health["uptime"] >= 0


def test_provenance_summary(gateway):
    summary = gateway.get_provenance_summary()

    assert summary["total_entries"] == 2
    assert summary["field_signatures"] == 3


@pytest.mark.parametrize("call", [
    lambda g: g.get_entity("ACCOUNT"),
    lambda g: g.get_all_entity_names(),
    lambda g: g.get_entity_field("ACCOUNT", "AccountID"),
    lambda g: g.get_entity_relationships("ACCOUNT"),
    lambda g: g.validate_entity_provenance("ACCOUNT"),
    lambda g: g.detect_fabricated_entities(["ACCOUNT"]),
    lambda g: g.generate_entity_certificate("ACCOUNT"),
    lambda g: g.get_health_status(),
])
def test_uninitialized_guard(model_file, call):
    """Every read API fails with NotInitializedError before initialize()."""
    gateway = AuthorityGateway(model_file)

    with pytest.raises(NotInitializedError):
        call(gateway)


def test_missing_source_fails(events):
    gateway = AuthorityGateway("/nonexistent/model.mmd", audit_observer=events.append)

    with pytest.raises(SourceUnavailableError):
        gateway.initialize()

    assert gateway.state is GatewayState.FAILED
    assert events[-1].event == "initialization_failed"
    with pytest.raises(NotInitializedError):
        gateway.get_all_entity_names()


def test_directory_source_fails():
    with tempfile.TemporaryDirectory() as directory:
        gateway = AuthorityGateway(directory)

        with pytest.raises(SourceUnavailableError):
            gateway.initialize()


def test_model_without_entities_fails():
    file_path = write_model("erDiagram\n    not an entity\n")
    try:
        gateway = AuthorityGateway(file_path)

        with pytest.raises(ParseIncompleteError):
            gateway.initialize()

        assert gateway.state is GatewayState.FAILED
        with pytest.raises(NotInitializedError):
            gateway.get_entity("ACCOUNT")
    finally:
        os.remove(file_path)


def test_failed_gateway_cannot_retry(model_file):
    """Retrying requires a new gateway instance."""
    missing = model_file + ".missing"
    gateway = AuthorityGateway(missing)
    with pytest.raises(SourceUnavailableError):
        gateway.initialize()

    os.rename(model_file, missing)
    try:
        with pytest.raises(GatewayStateError):
            gateway.initialize()

        retry = AuthorityGateway(missing)
        assert retry.initialize() is True
        retry.close()
    finally:
        os.rename(missing, model_file)


def test_initialize_twice_rejected(gateway):
    with pytest.raises(GatewayStateError):
        gateway.initialize()

    assert gateway.is_ready


def test_concurrent_initialize_rejected(model_file, monkeypatch):
    """A load in progress on another thread rejects a second initialize()."""
    gateway = AuthorityGateway(model_file)
    started = threading.Event()
    release = threading.Event()
    read_source = gateway._read_source

    def slow_read_source():
        started.set()
        release.wait(timeout=10)
        return read_source()

    monkeypatch.setattr(gateway, "_read_source", slow_read_source)
    worker = threading.Thread(target=gateway.initialize)
    worker.start()
    try:
        assert started.wait(timeout=10)
        assert gateway.state is GatewayState.INITIALIZING

        with pytest.raises(GatewayStateError):
            gateway.initialize()
    finally:
        release.set()
        worker.join(timeout=10)

    assert gateway.state is GatewayState.READY
    assert gateway.get_all_entity_names() == ["ACCOUNT", "CONTACT"]
    gateway.close()


def test_each_load_uses_a_new_salt(model_file):
    first = AuthorityGateway(model_file)
    second = AuthorityGateway(model_file)
    first.initialize()
    second.initialize()

    try:
        assert first.get_entity("ACCOUNT")["signature"] != second.get_entity("ACCOUNT")["signature"]
        assert first.get_health_status()["checksum"] == second.get_health_status()["checksum"]
    finally:
        first.close()
        second.close()


def test_access_events(gateway, events):
    """Each read emits an access event naming the operation and caller."""
    assert events[0].event == "initialized"
    assert events[0].params["entity_count"] == 2

    gateway.get_entity("ACCOUNT")

    access = events[-1]
    assert access.event == "access"
    assert access.operation == "get_entity"
    assert access.params == {"entity": "ACCOUNT"}
    assert "test_access_events" in access.caller


def test_audit_logging_disabled(model_file, events):
    gateway = AuthorityGateway(model_file, enable_audit_logging=False, audit_observer=events.append)
    gateway.initialize()
    gateway.get_entity("ACCOUNT")

    assert [event.event for event in events] == ["initialized"]
    gateway.close()


def test_failing_observer_does_not_change_results(model_file):
    def broken_observer(event):
        raise RuntimeError("audit sink unavailable")

    gateway = AuthorityGateway(model_file, audit_observer=broken_observer)
    assert gateway.initialize() is True

    assert gateway.get_all_entity_names() == ["ACCOUNT", "CONTACT"]
    gateway.close()


def test_custom_source_id(model_file):
    gateway = AuthorityGateway(model_file, source_id="BUSM-master.mmd")
    gateway.initialize()

    result = gateway.validate_entity_provenance("pestType")
    assert result["reason"] == "Entity 'pestType' not found in BUSM-master.mmd"
    gateway.close()


def test_closed_gateway_rejects_reads(model_file):
    """After close() reads fail with NotInitializedError, not a database error."""
    gateway = AuthorityGateway(model_file)
    gateway.initialize()
    gateway.close()

    assert gateway.state is GatewayState.CLOSED
    assert not gateway.is_ready
    with pytest.raises(NotInitializedError):
        gateway.validate_entity_provenance("ACCOUNT")
    with pytest.raises(NotInitializedError):
        gateway.get_entity("ACCOUNT")
    with pytest.raises(NotInitializedError):
        gateway.get_provenance_summary()
    with pytest.raises(GatewayStateError):
        gateway.initialize()

    gateway.close()


def test_detect_fabricated_single_name(gateway):
    """A bare name is checked as one name, not split into characters."""
    result = gateway.detect_fabricated_entities("ACCOUNT")

    assert [item["entity"] for item in result["valid"]] == ["ACCOUNT"]
    assert result["fabricated"] == []
    assert result["summary"]["total"] == 1


@pytest.mark.parametrize("certificate", [None, "ACCOUNT", {}])
def test_verify_malformed_certificate(gateway, certificate):
    assert gateway.verify_certificate(certificate) is False


def test_verify_certificate_with_unknown_algorithm(gateway):
    certificate = gateway.generate_entity_certificate("ACCOUNT")
    certificate["algorithm"] = "nope"

    assert gateway.verify_certificate(certificate) is False
