from deckweaver.services.content_validator import BLOCKED_SIGNATURES, is_valid


def test_short_body_rejected():
    assert not is_valid("x" * 50)


def test_long_body_with_block_signature_rejected():
    body = "a" * 2500 + "Just a moment..." + "b" * 2484
    assert len(body) == 5000
    assert not is_valid(body)


def test_long_clean_body_accepted():
    assert is_valid("固态电池" * 1250)


def test_empty_and_none_rejected():
    assert not is_valid("")
    assert not is_valid(None)


def test_signatures_are_case_sensitive():
    body = "just a moment... " + "c" * 400
    assert is_valid(body)


def test_every_signature_blocks():
    padding = "p" * 300
    for signature in BLOCKED_SIGNATURES:
        assert not is_valid(padding + signature), signature


def test_custom_threshold():
    assert is_valid("x" * 20, min_length=10)
    assert not is_valid("x" * 5, min_length=10)
