"""Tests for Creem webhook signature verification."""

import ast
import hashlib
import hmac
import inspect
import textwrap

import pytest

from creem_sync.webhooks.signature import (
    constant_time_equals,
    normalize_secret,
    normalize_signature,
    sign_payload,
    verify_signature,
)

pytestmark = pytest.mark.unit

SECRET = "whsec_abc123secret"
BODY = b'{"id":"evt_1","eventType":"checkout.completed","object":{}}'


class TestNormalization:
    def test_secret_prefix_is_stripped(self):
        assert normalize_secret("whsec_abc") == "abc"

    def test_secret_without_prefix_is_unchanged(self):
        assert normalize_secret("abc") == "abc"

    @pytest.mark.parametrize("prefix", ["sha256=", "sha256:"])
    def test_signature_algorithm_prefix_is_stripped(self, prefix):
        assert normalize_signature(f"{prefix}deadbeef") == "deadbeef"

    def test_signature_whitespace_is_ignored(self):
        assert normalize_signature("  deadbeef\n") == "deadbeef"


class TestSignPayload:
    def test_digest_is_keyed_with_normalized_secret(self):
        expected = hmac.new(b"abc123secret", BODY, hashlib.sha256).hexdigest()
        assert sign_payload(BODY, SECRET) == expected

    def test_prefixed_and_bare_secret_sign_identically(self):
        assert sign_payload(BODY, "whsec_abc123secret") == sign_payload(BODY, "abc123secret")

    def test_digest_is_lowercase_hex(self):
        digest = sign_payload(BODY, SECRET)
        assert len(digest) == 64
        assert digest == digest.lower()


class TestVerifySignature:
    @pytest.mark.parametrize(
        "body",
        [b"", b"{}", BODY, "{\"name\": \"Zoë\"}".encode("utf-8"), bytes(range(256))],
    )
    def test_valid_signature_verifies(self, body):
        assert verify_signature(body, sign_payload(body, SECRET), SECRET) is True

    @pytest.mark.parametrize("prefix", ["sha256=", "sha256:"])
    def test_prefixed_signature_verifies(self, prefix):
        assert verify_signature(BODY, prefix + sign_payload(BODY, SECRET), SECRET) is True

    def test_any_single_bit_flip_in_body_is_rejected(self):
        body = b'{"id":"evt_9"}'
        signature = sign_payload(body, SECRET)
        for byte_index in range(len(body)):
            for bit in range(8):
                mutated = bytearray(body)
                mutated[byte_index] ^= 1 << bit
                assert verify_signature(bytes(mutated), signature, SECRET) is False

    def test_wrong_secret_is_rejected(self):
        assert verify_signature(BODY, sign_payload(BODY, "whsec_other"), SECRET) is False

    def test_truncated_signature_is_rejected(self):
        assert verify_signature(BODY, sign_payload(BODY, SECRET)[:-1], SECRET) is False

    def test_uppercase_hex_is_rejected(self):
        assert verify_signature(BODY, sign_payload(BODY, SECRET).upper(), SECRET) is False

    @pytest.mark.parametrize("signature", ["", None])
    def test_missing_signature_is_rejected(self, signature):
        assert verify_signature(BODY, signature, SECRET) is False

    def test_missing_secret_is_rejected(self):
        assert verify_signature(BODY, sign_payload(BODY, SECRET), "") is False

    def test_non_ascii_signature_returns_false_without_raising(self):
        signature = "é" * 64
        assert verify_signature(BODY, signature, SECRET) is False

    def test_non_bytes_body_returns_false_without_raising(self):
        assert verify_signature("not-bytes", "00" * 32, SECRET) is False


class TestConstantTimeEquals:
    def test_equal_values(self):
        assert constant_time_equals(b"abcdef", b"abcdef") is True

    def test_difference_at_first_and_last_position(self):
        assert constant_time_equals(b"abcdef", b"xbcdef") is False
        assert constant_time_equals(b"abcdef", b"abcdex") is False

    def test_length_mismatch(self):
        assert constant_time_equals(b"abc", b"abcd") is False

    def test_comparison_loop_never_exits_early(self):
        """The only early return allowed is the length check; the loop must run to completion."""
        tree = ast.parse(textwrap.dedent(inspect.getsource(constant_time_equals)))
        loops = [node for node in ast.walk(tree) if isinstance(node, (ast.For, ast.While))]
        assert len(loops) == 1
        for node in ast.walk(loops[0]):
            assert not isinstance(node, (ast.Return, ast.Break, ast.If))
