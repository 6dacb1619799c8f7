from datetime import date

import pytest

from gantt_cpm.cpm.network import Activity, Network, parse_predecessor_text

MONDAY = date(2026, 1, 5)


def build_network(rows, start=MONDAY, **kwargs):
    """
    Helper: build a Network from dict rows.
    'preds' is grid text ("A; B SS+2"); every other key is an Activity field.
    """
    net = Network(project_start=start, **kwargs)
    for row in rows:
        row = dict(row)
        preds = parse_predecessor_text(row.pop("preds", ""))
        net.add_activity(Activity(predecessors=preds, **row))
    return net


@pytest.fixture
def make_network():
    return build_network


@pytest.fixture
def chain_network():
    """A (3 days) -> B (5 days), 5-day calendar, starting Monday."""
    return build_network([
        {"id": "A", "name": "Excavation", "duration": 3},
        {"id": "B", "name": "Foundations", "duration": 5, "preds": "A"},
    ])


@pytest.fixture
def paths_network():
    """
    A (3) -> B (5)          critical, ends on the latest EF
    C (2) -> D (1)          total float 5
    E (6)                   total float 2
    """
    return build_network([
        {"id": "A", "duration": 3},
        {"id": "B", "duration": 5, "preds": "A"},
        {"id": "C", "duration": 2},
        {"id": "D", "duration": 1, "preds": "C"},
        {"id": "E", "duration": 6},
    ])
