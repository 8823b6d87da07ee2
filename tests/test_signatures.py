"""Test signature determinism and salting."""

import hashlib

import pytest

from entity_authority.errors import SaltAlreadyDerivedError, SaltNotDerivedError
from entity_authority.models import (
    Entity,
    Field,
    FieldType,
    Relationship,
    RelationshipType,
    SignatureEngine,
    canonical_json,
    generate_content_checksum,
    hash_payload,
)


def make_contact(field_order):
    fields = {
        "ContactID": Field(name="ContactID", type=FieldType.INTEGER, constraint="PK"),
        "AccountID": Field(name="AccountID", type=FieldType.INTEGER, constraint="FK"),
        "Email": Field(name="Email"),
    }
    entity = Entity(name="CONTACT")
    for name in field_order:
        entity.add_field(fields[name])
    return entity


@pytest.fixture
def engine():
    engine = SignatureEngine(source_id="test-model.mmd")
    engine.derive_master_salt(generate_content_checksum("erDiagram"))
    return engine


def test_signatures_are_deterministic(engine):
    """Same inputs and salt always give identical hex digests."""
    entity = make_contact(["ContactID", "AccountID", "Email"])
    relationship = Relationship(source="ACCOUNT", target="CONTACT", type=RelationshipType.ONE_TO_MANY)

    assert engine.entity_signature(entity) == engine.entity_signature(entity)
    assert (
        engine.field_signature("CONTACT", entity.fields["Email"])
        == engine.field_signature("CONTACT", entity.fields["Email"])
    )
    assert engine.relationship_signature(relationship) == engine.relationship_signature(relationship)


def test_entity_signature_ignores_field_order(engine):
    """Declaration order of fields does not change the entity signature."""
    first = make_contact(["ContactID", "AccountID", "Email"])
    second = make_contact(["Email", "AccountID", "ContactID"])

    assert list(first.fields) != list(second.fields)
    assert engine.entity_signature(first) == engine.entity_signature(second)


def test_entity_signature_tracks_structure(engine):
    """Adding a field or changing a key role changes the signature."""
    base = make_contact(["ContactID", "AccountID", "Email"])
    extra = make_contact(["ContactID", "AccountID", "Email"])
    extra.add_field(Field(name="Phone"))
    no_fk = make_contact(["ContactID", "AccountID", "Email"])
    no_fk.add_field(Field(name="AccountID", type=FieldType.INTEGER))

    signature = engine.entity_signature(base)
    assert engine.entity_signature(extra) != signature
    assert engine.entity_signature(no_fk) != signature


def test_field_signature_includes_constraint(engine):
    plain = Field(name="AccountID", type=FieldType.INTEGER)
    foreign = Field(name="AccountID", type=FieldType.INTEGER, constraint="FK")

    assert engine.field_signature("CONTACT", plain) != engine.field_signature("CONTACT", foreign)
    assert engine.field_signature("CONTACT", plain) != engine.field_signature("ACCOUNT", plain)


def test_signatures_differ_across_loads():
    """Two loads of the same content get different salts and signatures."""
    checksum = generate_content_checksum("erDiagram")
    entity = make_contact(["ContactID", "AccountID", "Email"])

    first = SignatureEngine()
    second = SignatureEngine()
    first.derive_master_salt(checksum)
    second.derive_master_salt(checksum)

    assert first.salt != second.salt
    assert first.entity_signature(entity) != second.entity_signature(entity)


def test_signing_requires_salt():
    engine = SignatureEngine()

    with pytest.raises(SaltNotDerivedError):
        engine.entity_signature(make_contact(["ContactID"]))


def test_salt_is_derived_once(engine):
    salt = engine.salt

    with pytest.raises(SaltAlreadyDerivedError):
        engine.derive_master_salt("another-checksum")

    assert engine.salt == salt


def test_entity_signature_matches_documented_payload(engine):
    """The entity signature is the hash of its canonical payload."""
    entity = make_contact(["Email", "ContactID", "AccountID"])
    payload = {
        "name": "CONTACT",
        "fields": ["AccountID", "ContactID", "Email"],
        "primary_key": "ContactID",
        "foreign_keys": ["AccountID"],
        "source": "test-model.mmd",
        "salt": engine.salt,
    }

    expected = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    assert engine.entity_signature(entity) == expected


def test_alternate_algorithm():
    engine = SignatureEngine(algorithm="sha512")
    engine.derive_master_salt("checksum")

    signature = engine.entity_signature(make_contact(["ContactID"]))
    assert len(signature) == 128
    assert len(engine.salt) == 128


def test_invalid_configuration():
    with pytest.raises(ValueError):
        SignatureEngine(algorithm="not-a-hash")
    with pytest.raises(ValueError):
        SignatureEngine(salt_length=0)


def test_canonical_json_is_order_independent():
    assert canonical_json({"b": 1, "a": [2, 3]}) == '{"a":[2,3],"b":1}'
    assert hash_payload({"x": 1, "y": 2}) == hash_payload({"y": 2, "x": 1})


def test_content_checksum():
    assert generate_content_checksum("erDiagram") == hashlib.sha256(b"erDiagram").hexdigest()
