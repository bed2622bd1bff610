import pytest

from conftest import text_payload, wifi_payload
from qrlink.classifier import classify, classify_all
from qrlink.payloads import DecodedPayload, JoinNetwork, ShowText, ValueType, WifiCredentials


def test_text_payload_becomes_show_text():
    assert classify(text_payload("hello")) == ShowText("hello")


def test_wifi_payload_becomes_join_network():
    action = classify(wifi_payload("Net1", "pw123"))

    assert isinstance(action, JoinNetwork)
    assert action.credentials.ssid == "Net1"
    assert action.credentials.passphrase == "pw123"


@pytest.mark.parametrize(
    "payload",
    [
        DecodedPayload(raw_value_type=ValueType.TEXT),
        DecodedPayload(raw_value_type=ValueType.WIFI),
        DecodedPayload(raw_value_type=ValueType.WIFI, wifi=WifiCredentials(ssid=None, passphrase="pw")),
        DecodedPayload(raw_value_type=ValueType.WIFI, wifi=WifiCredentials(ssid="", passphrase="pw")),
        DecodedPayload(raw_value_type=ValueType.WIFI, wifi=WifiCredentials(ssid="Net1", passphrase=None)),
        DecodedPayload(raw_value_type=ValueType.OTHER, raw_text="binary"),
    ],
)
def test_incomplete_or_unknown_payloads_produce_nothing(payload):
    assert classify(payload) is None


def test_empty_passphrase_still_joins():
    action = classify(wifi_payload("Guest", ""))
    assert isinstance(action, JoinNetwork)


def test_classify_all_keeps_decode_order_and_skips_gaps():
    payloads = [
        text_payload("first"),
        DecodedPayload(raw_value_type=ValueType.OTHER),
        wifi_payload("Net1", "pw123"),
        text_payload("last"),
    ]

    actions = classify_all(payloads)

    assert [type(a) for a in actions] == [ShowText, JoinNetwork, ShowText]
    assert actions[0].text == "first"
    assert actions[2].text == "last"
