import pytest

from brand_service.errors import InvalidUrlError
from brand_service.services.domains import extract_domain


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.Example.com/path", "example.com"),
        ("http://example.com:8080/x", "example.com"),
        ("sub.example.com", "sub.example.com"),
        ("  https://acme.io/pricing?ref=ad#top  ", "acme.io"),
        ("WWW.ACME.IO.", "acme.io"),
        ("https://user:pw@shop.acme.co.uk/cart", "shop.acme.co.uk"),
    ],
)
def test_extract_domain(url: str, expected: str) -> None:
    assert extract_domain(url) == expected


@pytest.mark.parametrize("url", ["", "   ", "https://", "www."])
def test_extract_domain_rejects_input_without_host(url: str) -> None:
    with pytest.raises(InvalidUrlError):
        extract_domain(url)
