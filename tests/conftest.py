"""
pytest configuration and fixtures for schema tests.

Provides reusable fixtures for:
- Fixture schema files (orders.proto, address.proto, mqtt_table.json)
- A resolved graph for the online store messages
- The MQTT table configuration schema
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from proto_parser import parse_proto_file  # noqa: E402
from schema_loader import load_document  # noqa: E402
from schema_resolver import ConfigUnit, MessageUnit, SchemaResolver  # noqa: E402

FIXTURES = Path(__file__).parent / "fixtures"

# Configure Hypothesis profiles
try:
    from hypothesis import settings, Verbosity, Phase

    # Default profile: balanced speed and coverage
    settings.register_profile(
        "default",
        max_examples=100,
        deadline=None,
    )

    # CI profile: more thorough testing
    settings.register_profile(
        "ci",
        max_examples=500,
        deadline=None,
        suppress_health_check=[],
        phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    )

    # Dev profile: fast iteration
    settings.register_profile(
        "dev",
        max_examples=10,
        deadline=None,
    )

    # Debug profile: verbose output
    settings.register_profile(
        "debug",
        max_examples=10,
        verbosity=Verbosity.verbose,
        deadline=None,
    )

    settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))

except ImportError:
    pass  # Hypothesis not installed


@pytest.fixture(scope="session")
def fixtures_dir():
    return FIXTURES


@pytest.fixture(scope="session")
def orders_unit():
    decl = parse_proto_file((FIXTURES / "orders.proto").read_text())
    return MessageUnit.from_declarations("orders.proto", decl)


@pytest.fixture(scope="session")
def address_unit():
    decl = parse_proto_file((FIXTURES / "address.proto").read_text())
    return MessageUnit.from_declarations("address.proto", decl)


@pytest.fixture(scope="session")
def orders_graph(orders_unit, address_unit):
    """Resolved online store schema; shared read-only by every test."""
    return SchemaResolver().resolve([orders_unit, address_unit])


@pytest.fixture(scope="session")
def mqtt_schema():
    """Resolved MQTT table configuration schema (root node)."""
    unit = ConfigUnit("mqtt_table.json", load_document(FIXTURES / "mqtt_table.json"))
    graph = SchemaResolver().resolve([unit])
    return graph.config("mqtt_table.json")


@pytest.fixture
def sample_order():
    return {
        'order_id': 'ORD-1001',
        'customer_id': 'CUST-7',
        'items': [
            {'product_id': 'P-1', 'product_name': 'Widget', 'quantity': 2,
             'price_per_unit': 9.99},
            {'product_id': 'P-2', 'product_name': 'Gadget', 'quantity': 1,
             'price_per_unit': 24.5},
        ],
        'order_status': 'PAID',
        'total_amount': 44.48,
        'currency': 'EUR',
        'payment': {'payment_method': 'card', 'transaction_id': 'TX-99'},
        'shipping_address': {'street': '1 Main St', 'city': 'Springfield',
                             'country': 'US'},
    }


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that read schema files from disk"
    )
