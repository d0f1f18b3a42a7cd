"""Pytest fixtures for order_pipeline tests."""
import pytest

from _helper import FakeOrderStore
from order_pipeline.payment_validation import PaymentValidator
from order_pipeline.transitions import OrderStatusManager


@pytest.fixture
def store():
    return FakeOrderStore()


@pytest.fixture
def manager(store):
    return OrderStatusManager(store)


@pytest.fixture
def validator(store):
    return PaymentValidator(store)
