"""Tests for PKCE helpers: verifier generation and S256 challenge derivation."""

from __future__ import annotations

import re

import pytest

from vestibule.infra.auth.pkce import derive_code_challenge, generate_code_verifier


@pytest.mark.unit
class TestDeriveCodeChallenge:
    """Test RFC 7636 S256 code challenge derivation."""

    def test_rfc7636_example_vector(self) -> None:
        """Test against the RFC 7636 Appendix B example."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        expected = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
        assert derive_code_challenge(verifier) == expected

    def test_no_padding(self) -> None:
        """Base64url output must not contain '=' padding."""
        challenge = derive_code_challenge("some_verifier_value_for_testing_padding")
        assert "=" not in challenge


@pytest.mark.unit
class TestGenerateCodeVerifier:
    def test_length_and_alphabet(self) -> None:
        verifier = generate_code_verifier()
        assert 43 <= len(verifier) <= 128
        assert re.fullmatch(r"[A-Za-z0-9_-]+", verifier)

    def test_unique(self) -> None:
        assert generate_code_verifier() != generate_code_verifier()
