"""
Markdown summaries of a plan for the step summary and PR comments.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import jinja2
import structlog

from tfops.exitcode import ChangeState, PlanOutcome

LOGGER = structlog.get_logger(__name__)

PLAN_COUNTS_RE = re.compile(
    r"Plan: (?P<add>\d+) to add, (?P<change>\d+) to change, (?P<destroy>\d+) to destroy"
)
RESOURCE_RE = re.compile(r"^\s*# (?P<address>\S+) (?P<action>will be|must be) (?P<what>.+)$")

# GitHub rejects comment bodies above 65536 characters
MAX_DIFF_CHARS = 60000

SUMMARY_TMPL = """
### Terraform plan: `{{ environment }}`

{% if state == 'NO_CHANGES' -%}
✅ No changes. Infrastructure matches the configuration.
{% elif state == 'HAS_ERROR' -%}
❌ Plan failed. See the job logs.
{% elif state == 'UNEXPECTED_EXIT' -%}
❌ Plan exited with unexpected code {{ exitcode }}. See the job logs.
{% else -%}
⚠️ Changes pending approval.
{% if plan and plan.counted %}

| Add | Change | Destroy |
|---:|---:|---:|
| {{ plan.add }} | {{ plan.change }} | {{ plan.destroy }} |
{% endif %}
{% if plan and plan.resources %}

Resources:

{% for address, what in plan.resources -%}
- `{{ address }}` {{ what }}
{% endfor -%}
{% endif %}
{% if plan and plan.diff %}

<details>
<summary>Plan output</summary>

```diff
{% for ln in plan.diff -%}
{{ ln }}
{% endfor -%}
```
{% if plan.truncated %}
_Output truncated._
{% endif %}
</details>
{% endif %}
{% endif %}
"""


@dataclass
class PlanSummary:
    add: int = 0
    change: int = 0
    destroy: int = 0
    counted: bool = False
    resources: list[tuple[str, str]] = field(default_factory=list)
    diff: list[str] = field(default_factory=list)
    truncated: bool = False


def _normalize_diff_line(line: str) -> str:
    """Move Terraform's change marker to column 0 so ```diff colours it."""
    stripped = line.lstrip()
    for marker, replacement in (("~", "!"), ("+", "+"), ("-", "-")):
        if stripped.startswith(marker):
            return replacement + line.replace(stripped, stripped[1:], 1)
    return line


def parse_plan_output(text: str) -> PlanSummary:
    summary = PlanSummary()
    size = 0
    for ln in text.splitlines():
        if m := PLAN_COUNTS_RE.search(ln):
            summary.add, summary.change, summary.destroy = (int(m.group(k)) for k in ("add", "change", "destroy"))
            summary.counted = True
        if m := RESOURCE_RE.match(ln):
            summary.resources.append((m.group("address"), f"{m.group('action')} {m.group('what')}"))
        if summary.truncated:
            continue
        size += len(ln) + 1
        if size > MAX_DIFF_CHARS:
            summary.truncated = True
            continue
        summary.diff.append(_normalize_diff_line(ln))
    return summary


def read_plan_log(log_file: Path) -> str | None:
    if not log_file.is_file():
        LOGGER.warning("log file missing", path=str(log_file))
        return None
    return log_file.read_text(encoding="utf-8", errors="replace")


def render_summary(environment: str, outcome: PlanOutcome, *, plan_text: str | None = None) -> str:
    plan = None
    if outcome.state is ChangeState.DIRTY and plan_text:
        plan = parse_plan_output(plan_text)
    rendered = jinja2.Template(SUMMARY_TMPL).render(
        environment=environment,
        state=outcome.state.value,
        exitcode=outcome.code,
        plan=plan,
    )
    return rendered.strip() + "\n"
