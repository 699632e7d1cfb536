from urllib.parse import parse_qs, urlparse

import pytest

from conftest import MERCHANT
from arcpay.errors import ConfigurationError, InvalidInputError
from arcpay.links.signing import PaymentLinkSigner

SECRET = "link-secret"


@pytest.fixture
def signer():
    return PaymentLinkSigner(SECRET, app_url="https://pay.example/")


def test_signed_link_verifies(signer):
    link = signer.sign_link(MERCHANT, "12.5", label="Coffee", ref="order-1")
    params = link["params"]

    assert link["url"].startswith("https://pay.example/pay?")
    assert parse_qs(urlparse(link["url"]).query)["sig"] == [link["sig"]]
    assert params["amount"] == "12.500000"

    result = signer.verify_link(
        to=params["to"],
        amount=params["amount"],
        sig=params["sig"],
        label=params["label"],
        ref=params["ref"],
        expires=params["expires"],
    )
    assert result.valid
    assert result.to_dict()["merchantAddress"] == MERCHANT
    assert result.expires_at == link["expiresAt"]


def test_tampered_amount_is_rejected(signer):
    params = signer.sign_link(MERCHANT, "10")["params"]

    result = signer.verify_link(to=params["to"], amount="1.000000", sig=params["sig"], expires=params["expires"])

    assert not result.valid
    assert result.to_dict() == {"valid": False, "error": "Invalid signature"}


def test_merchant_case_does_not_matter(signer):
    merchant = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
    params = signer.sign_link(merchant, "10", expires_in_hours=None)["params"]

    assert "expires" not in params
    assert params["to"] != merchant
    assert signer.verify_link(to=merchant, amount=params["amount"], sig=params["sig"]).valid


def test_expired_link(signer):
    params = signer.sign_link(MERCHANT, "10", expires_in_hours=1)["params"]
    later = int(params["expires"]) + 1

    result = signer.verify_link(
        to=params["to"], amount=params["amount"], sig=params["sig"], expires=params["expires"], now=later
    )

    assert result.error == "Link expired"


def test_missing_and_malformed_params(signer):
    assert signer.verify_link(to=MERCHANT, amount=None, sig="00").error == "Missing required parameters"
    assert signer.verify_link(to=MERCHANT, amount="1", sig="00", expires="soon").error == "Invalid expiry"


def test_sign_validates_inputs(signer):
    with pytest.raises(InvalidInputError):
        signer.sign_link("not-an-address", "1")
    with pytest.raises(InvalidInputError):
        signer.sign_link(MERCHANT, "0")
    with pytest.raises(ConfigurationError):
        PaymentLinkSigner("").sign_link(MERCHANT, "1")
