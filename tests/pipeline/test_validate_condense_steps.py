"""Tests for content validation/repair and priority-tiered condensation."""

from __future__ import annotations

import pytest

from docmine.pipeline.models import UpdateType
from docmine.pipeline.steps import ContentValidationStep, LengthReductionStep
from docmine.pipeline.steps.base import StepServices
from docmine.pipeline.steps.condense import LengthTier, select_tier
from docmine.pipeline.steps.validate import check_json, check_markdown, check_yaml, detect_format
from tests.factories import make_context, make_domain, make_proposal, make_services, make_thread, step_config
from tests.fakes import FakeModelClient


def _with_proposals(*proposals, category="troubleshooting", domain=None):
    context = make_context(domain=domain)
    context.threads = [make_thread("t1", category=category)]
    context.proposals = {"t1": list(proposals)}
    return context


class TestFormatChecks:
    @pytest.mark.parametrize(
        ("page", "expected"),
        [("docs/a.md", "markdown"), ("docs/a.MDX", "markdown"), ("cfg/x.json", "json"), ("cfg/x.yml", "yaml"), ("a.txt", None)],
    )
    def test_detect_format(self, page, expected):
        assert detect_format(page) == expected

    def test_markdown_fences(self):
        assert check_markdown("```bash\nrun\n```\n") is None
        assert check_markdown("```bash\nrun\n") == "unclosed code fence"

    def test_markdown_inline_code(self):
        assert check_markdown("Use `pip` and ``code``.") is None
        assert check_markdown("Use `pip to install") == "unbalanced inline code backticks"

    def test_backticks_inside_fences_are_ignored(self):
        assert check_markdown("```\nodd ` tick\n```") is None

    def test_json_and_yaml(self):
        assert check_json('{"a": 1}') is None
        assert check_json('{"a": ').startswith("invalid JSON")
        assert check_yaml("a: 1\nb: [2, 3]\n") is None
        assert check_yaml("a: [1, 2\n").startswith("invalid YAML")


class TestContentValidation:
    def test_valid_content_needs_no_model(self):
        client = FakeModelClient([])
        step = ContentValidationStep(step_config("validate"), make_services(client))
        proposal = make_proposal("cfg/app.json", '{"ok": true}')
        context = _with_proposals(proposal)
        step.execute(context)
        assert context.proposals["t1"] == [proposal]
        assert client.calls == 0

    def test_broken_json_is_repaired(self):
        client = FakeModelClient([{"reformattedContent": '{"ok": true}'}])
        step = ContentValidationStep(step_config("validate"), make_services(client))
        context = _with_proposals(make_proposal("cfg/app.json", '{"ok": '))
        step.execute(context)

        [fixed] = context.proposals["t1"]
        assert fixed.suggested_text == '{"ok": true}'
        assert fixed.warnings[0].startswith("Reformatted json content to fix: invalid JSON")
        assert "cfg/app.json" in client.requests[0].user_prompt

    def test_gives_up_after_max_retries(self):
        client = FakeModelClient([{"reformattedContent": "```still"}, {"reformattedContent": "```still broken"}])
        step = ContentValidationStep(step_config("validate", maxRetries=2), make_services(client))
        context = _with_proposals(make_proposal("docs/a.md", "```bash\nrun"))
        step.execute(context)

        [kept] = context.proposals["t1"]
        assert client.calls == 2
        assert kept.suggested_text == "```still broken"
        assert kept.warnings == ["Content has markdown problems after 2 reformat attempts: unclosed code fence"]

    def test_zero_retries_only_flags(self):
        client = FakeModelClient([])
        step = ContentValidationStep(step_config("validate", maxRetries=0), make_services(client))
        context = _with_proposals(make_proposal("cfg/x.yaml", "a: [1"))
        step.execute(context)
        assert client.calls == 0
        assert context.proposals["t1"][0].warnings[0].startswith("Content has yaml problems after 0 reformat attempts")

    def test_skips_deletes_unknown_formats_and_patterns(self):
        client = FakeModelClient([])
        step = ContentValidationStep(step_config("validate", skipPatterns=["^generated/"]), make_services(client))
        proposals = [
            make_proposal("docs/a.md", None, update_type=UpdateType.DELETE),
            make_proposal("notes/a.txt", "```"),
            make_proposal("generated/a.json", "{"),
        ]
        context = _with_proposals(*proposals)
        step.execute(context)
        assert context.proposals["t1"] == proposals
        assert client.calls == 0

    def test_skip_pattern_matching_content_only(self):
        client = FakeModelClient([])
        step = ContentValidationStep(step_config("validate", skipPatterns=[r"^!function"]), make_services(client))
        bundle = make_proposal("docs/a.md", "!function(){`x}")
        context = _with_proposals(bundle)
        step.execute(context)
        assert context.proposals["t1"] == [bundle]
        assert client.calls == 0

    def test_model_failure_keeps_original(self):
        client = FakeModelClient([RuntimeError("down")])
        step = ContentValidationStep(step_config("validate"), make_services(client))
        original = make_proposal("cfg/app.json", "{")
        context = _with_proposals(original)
        step.execute(context)
        assert context.proposals["t1"] == [original]
        assert context.errors[0].context["page"] == "cfg/app.json"

    @pytest.mark.parametrize("config", [{"maxRetries": 6}, {"maxRetries": -1}, {"skipPatterns": ["("]}])
    def test_validate_config(self, config):
        step = ContentValidationStep(step_config("validate"), StepServices())
        assert not step.validate_config(step_config("validate", **config))


TIERS = [
    {"minPriority": 80, "maxLength": 500, "targetLength": 300},
    {"minPriority": 50, "maxLength": 200, "targetLength": 120},
]


class TestLengthReduction:
    def test_select_tier(self):
        tiers = [LengthTier.from_config(raw) for raw in TIERS]
        default = LengthTier(0, 100, 60)
        assert select_tier(90, tiers, default).max_length == 500
        assert select_tier(50, tiers, default).max_length == 200
        assert select_tier(10, tiers, default) is default

    def test_text_within_budget_is_untouched(self):
        client = FakeModelClient([])
        step = LengthReductionStep(step_config("condense", defaultMaxLength=100), make_services(client))
        proposal = make_proposal(text="x" * 100)
        context = _with_proposals(proposal)
        step.execute(context)
        assert context.proposals["t1"] == [proposal]
        assert client.calls == 0

    def test_long_text_is_condensed_once(self):
        client = FakeModelClient([{"condensedContent": "y" * 50}])
        step = LengthReductionStep(
            step_config("condense", defaultMaxLength=100, defaultTargetLength=60), make_services(client)
        )
        context = _with_proposals(make_proposal(text="x" * 150))
        step.execute(context)

        [condensed] = context.proposals["t1"]
        assert condensed.suggested_text == "y" * 50
        assert condensed.warnings == ["Condensed from 150 to 50 characters"]
        assert "60" in client.requests[0].system_prompt

    def test_high_priority_category_gets_larger_budget(self):
        client = FakeModelClient([])
        step = LengthReductionStep(
            step_config("condense", defaultMaxLength=100, priorityTiers=TIERS), make_services(client)
        )
        context = _with_proposals(make_proposal(text="x" * 400), domain=make_domain(categories={"troubleshooting": 90}))
        step.execute(context)
        assert client.calls == 0

    def test_longer_output_is_accepted_with_warning(self):
        client = FakeModelClient([{"condensedContent": "y" * 200}])
        step = LengthReductionStep(step_config("condense", defaultMaxLength=100), make_services(client))
        context = _with_proposals(make_proposal(text="x" * 150))
        step.execute(context)
        [result] = context.proposals["t1"]
        assert result.suggested_text == "y" * 200
        assert result.warnings == ["Condensed from 150 to 200 characters"]

    def test_deletes_are_skipped(self):
        client = FakeModelClient([])
        step = LengthReductionStep(step_config("condense", defaultMaxLength=100), make_services(client))
        proposal = make_proposal(text="x" * 500, update_type=UpdateType.DELETE)
        context = _with_proposals(proposal)
        step.execute(context)
        assert context.proposals["t1"] == [proposal]

    def test_failure_keeps_original(self):
        client = FakeModelClient([RuntimeError("down")])
        step = LengthReductionStep(step_config("condense", defaultMaxLength=100), make_services(client))
        original = make_proposal(text="x" * 150)
        context = _with_proposals(original)
        step.execute(context)
        assert context.proposals["t1"] == [original]
        assert "Condensation failed" in context.errors[0].message

    @pytest.mark.parametrize(
        "config",
        [
            {"defaultMaxLength": 50},
            {"defaultMaxLength": 500, "defaultTargetLength": 500},
            {"priorityTiers": [{"minPriority": 80, "maxLength": 100, "targetLength": 200}]},
            {"priorityTiers": [{"minPriority": 80}]},
        ],
    )
    def test_validate_config(self, config):
        step = LengthReductionStep(step_config("condense"), StepServices())
        assert not step.validate_config(step_config("condense", **config))
