import pytest

from app.models.payment import PaymentStatus
from app.services.payments.status import is_failed, is_settled, map_gateway_status


class TestMapGatewayStatus:
    @pytest.mark.parametrize(
        "gateway_status,expected",
        [
            ("settlement", PaymentStatus.SETTLEMENT),
            ("capture", PaymentStatus.CAPTURE),
            ("pending", PaymentStatus.PENDING),
            ("deny", PaymentStatus.DENY),
            ("cancel", PaymentStatus.CANCEL),
            ("expire", PaymentStatus.EXPIRE),
            ("refund", PaymentStatus.REFUND),
            ("partial_refund", PaymentStatus.PARTIAL_REFUND),
        ],
    )
    def test_direct_mapping(self, gateway_status, expected):
        assert map_gateway_status(gateway_status) is expected

    def test_fraud_challenge_holds_payment(self):
        assert map_gateway_status("capture", "challenge") is PaymentStatus.PENDING
        assert map_gateway_status("settlement", "challenge") is PaymentStatus.PENDING

    def test_fraud_accept_settles(self):
        assert map_gateway_status("capture", "accept") is PaymentStatus.SETTLEMENT
        assert map_gateway_status("pending", "accept") is PaymentStatus.SETTLEMENT

    @pytest.mark.parametrize("gateway_status", ["authorize", "", None, "SETTLEMENT"])
    def test_unknown_status_stays_pending(self, gateway_status):
        assert map_gateway_status(gateway_status) is PaymentStatus.PENDING

    def test_settled_and_failed_groups(self):
        assert is_settled("settlement") and is_settled("capture") and is_settled("completed")
        assert not is_settled("pending")
        assert is_failed("deny") and is_failed("expire")
        assert not is_failed("refund")
