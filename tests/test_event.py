"""Tests for signed events, keys and signatures."""

import hashlib
import json
from dataclasses import replace

import pytest

from gitrelay.crypto import LocalKeySigner, Signer, verify_event
from gitrelay.domain.event import EventTemplate, SignedEvent, canonical_serialization
from gitrelay.errors import MalformedEventError, ValidationError
from gitrelay.keys import normalize_pubkey, npub_decode, npub_encode, nsec_decode, try_normalize_pubkey

from conftest import ALICE_SECRET, make_event


class TestCanonicalSerialization:
    """Tests for the id-relevant serialization."""

    def test_compact_fixed_order(self):
        """Fields appear in the fixed order with no whitespace."""
        text = canonical_serialization('ab' * 32, 1700000000, 1, (('t', 'x'),), 'hi')
        assert text == '[0,"' + 'ab' * 32 + '",1700000000,1,[["t","x"]],"hi"]'

    def test_non_ascii_left_unescaped(self):
        """Unicode content is hashed as UTF-8, not as escape sequences."""
        text = canonical_serialization('ab' * 32, 1, 1, (), 'héllo ✓')
        assert 'héllo ✓' in text
        assert '\\u' not in text

    def test_id_is_sha256_of_serialization(self):
        """The template id is the lowercase hex SHA-256 of the serialization."""
        template = EventTemplate(pubkey='ab' * 32, kind=1, tags=[['t', 'x']], content='hi', created_at=5)
        expected = hashlib.sha256(
            canonical_serialization('ab' * 32, 5, 1, (('t', 'x'),), 'hi').encode('utf-8')
        ).hexdigest()
        assert template.compute_id() == expected


class TestSignedEvent:
    """Tests for SignedEvent shape validation and signatures."""

    def test_sign_and_verify(self, alice):
        """A freshly signed event verifies."""
        event = make_event(alice, 1, [['t', 'test']], content='hello')
        assert event.has_valid_id()
        assert verify_event(event)

    def test_tampered_content_fails(self, alice):
        """Changing any signed field invalidates the event."""
        event = make_event(alice, 1, content='hello')
        assert not verify_event(replace(event, content='goodbye'))

    def test_tampered_tags_fail(self, alice):
        event = make_event(alice, 1, [['p', 'ab' * 32]])
        assert not verify_event(replace(event, tags=(('p', 'cd' * 32),)))

    def test_signature_from_other_key_fails(self, alice, bob):
        """A valid signature by someone else does not verify for the claimed author."""
        event = make_event(alice, 1, content='hello')
        forged = make_event(bob, 1, content='hello')
        claimed = replace(forged, pubkey=alice.pubkey, id=event.id)
        assert not verify_event(claimed)

    def test_verify_never_raises(self, alice):
        """Garbage in a signature is simply invalid."""
        event = make_event(alice, 1)
        assert not verify_event(replace(event, sig='00' * 64))

    def test_round_trip_through_dict(self, alice):
        event = make_event(alice, 30617, [['d', 'demo']])
        assert SignedEvent.from_dict(json.loads(event.to_json())) == event

    @pytest.mark.parametrize('field_name,value', [
        ('id', 'xyz'),
        ('pubkey', 'AB' * 32),
        ('sig', 'ab' * 10),
        ('kind', 'one'),
        ('created_at', -1),
        ('content', 5),
        ('tags', [['ok'], [1, 2]]),
    ])
    def test_from_dict_names_bad_field(self, alice, field_name, value):
        """Shape errors name the offending field."""
        data = make_event(alice, 1).to_dict()
        data[field_name] = value
        with pytest.raises(MalformedEventError) as excinfo:
            SignedEvent.from_dict(data)
        assert excinfo.value.field == field_name

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(MalformedEventError):
            SignedEvent.from_dict(['EVENT'])

    def test_tag_helpers(self, alice):
        """Tag accessors read first values and full value lists."""
        event = make_event(alice, 30617, [
            ['d', 'demo'],
            ['clone', 'https://a.example/x.git', 'https://b.example/x.git'],
            ['t', 'fork'],
        ])
        assert event.d_tag == 'demo'
        assert event.tag_values('clone') == ['https://a.example/x.git', 'https://b.example/x.git']
        assert event.first_values('clone') == ['https://a.example/x.git']
        assert event.has_tag('t', 'fork')
        assert not event.has_tag('t', 'private')
        assert event.tag_value('missing') is None


class TestLocalKeySigner:
    """Tests for LocalKeySigner."""

    def test_hex_secret(self):
        signer = LocalKeySigner(ALICE_SECRET)
        assert len(signer.pubkey) == 64

    def test_rejects_bad_secret(self):
        with pytest.raises(ValidationError):
            LocalKeySigner('not-a-key')

    def test_rejects_foreign_template(self, alice, bob):
        """A signer only signs templates carrying its own pubkey."""
        template = EventTemplate(pubkey=bob.pubkey, kind=1)
        with pytest.raises(ValidationError):
            alice.sign_template(template)

    def test_repr_hides_secret(self, alice):
        assert ALICE_SECRET not in repr(alice)

    def test_signer_interface_is_abstract(self):
        with pytest.raises(TypeError):
            Signer()


class TestKeys:
    """Tests for the bech32 key codec."""

    NIP19_HEX = '7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e'
    NIP19_NPUB = 'npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg'
    NIP19_SECRET_HEX = '67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa'
    NIP19_NSEC = 'nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5'

    def test_npub_vector(self):
        assert npub_encode(self.NIP19_HEX) == self.NIP19_NPUB
        assert npub_decode(self.NIP19_NPUB) == self.NIP19_HEX

    def test_nsec_vector(self):
        assert nsec_decode(self.NIP19_NSEC) == self.NIP19_SECRET_HEX

    def test_nsec_signer_matches_hex_signer(self):
        assert LocalKeySigner(self.NIP19_NSEC).pubkey == LocalKeySigner(self.NIP19_SECRET_HEX).pubkey

    def test_normalize_accepts_npub_and_uppercase_hex(self):
        assert normalize_pubkey(self.NIP19_NPUB) == self.NIP19_HEX
        assert normalize_pubkey(self.NIP19_HEX.upper()) == self.NIP19_HEX

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValidationError) as excinfo:
            normalize_pubkey('npub1notreally', field='owner')
        assert excinfo.value.field == 'owner'
        assert try_normalize_pubkey('abc') is None
        assert try_normalize_pubkey(None) is None

    def test_npub_decode_rejects_nsec(self):
        with pytest.raises(ValidationError):
            npub_decode(self.NIP19_NSEC)
