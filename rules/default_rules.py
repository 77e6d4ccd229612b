"""
Stock automated responses seeded on first start.
"""

from __future__ import annotations

from rules.rule_models import Rule

DEFAULT_RULE_DEFINITIONS: list[dict] = [
    {
        "id": "brute-force-protection",
        "name": "Brute Force Protection",
        "description": "Automatically block IPs attempting brute force attacks",
        "conditions": [
            {"kind": "eventKind", "operator": "equals", "value": "SSHLoginAttempt"},
            {
                "kind": "count",
                "operator": "greaterThan",
                "value": 5,
                "time_window_seconds": 300,
            },
        ],
        "actions": [
            {"kind": "block_ip", "config": {"duration_minutes": 60}},
            {"kind": "notify", "config": {"channels": ["telegram", "email"]}},
        ],
    },
    {
        "id": "sql-injection-alert",
        "name": "SQL Injection Alert",
        "description": "Generate report and notify on SQL injection attempts",
        "conditions": [
            {"kind": "eventKind", "operator": "contains", "value": "SQLInjection"},
        ],
        "actions": [
            {"kind": "report", "config": {"report_type": "incident"}},
            {"kind": "notify", "config": {"channels": ["telegram"]}},
        ],
    },
]


def default_rules() -> list[Rule]:
    return [Rule.from_dict(definition) for definition in DEFAULT_RULE_DEFINITIONS]
