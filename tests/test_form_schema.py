"""Form page schemas and friendly validation messages."""

import pytest

from intake_engine.models.form import (
    ALL_FIELDS,
    PAGE_FIELDS,
    FormAssessmentInput,
    form_completion,
    form_from_wire,
    form_to_wire,
    page_of,
    validate_field,
    validate_page,
)

VALID_PAGE1 = {
    "primary_concerns": "She has been anxious before school every morning",
    "concern_duration": "1-3-months",
    "concern_severity": 3,
}
VALID_PAGE3 = {"therapy_goals": "Learn ways to manage her worry"}


class TestPage1:

    def test_valid_page(self):
        assert validate_page(1, VALID_PAGE1) == {}

    @pytest.mark.parametrize("severity", [1, 5])
    def test_severity_bounds_accepted(self, severity):
        assert validate_page(1, {**VALID_PAGE1, "concern_severity": severity}) == {}

    @pytest.mark.parametrize("severity", [0, 6])
    def test_severity_out_of_range_rejected(self, severity):
        errors = validate_page(1, {**VALID_PAGE1, "concern_severity": severity})
        assert errors == {"concern_severity": "Severity must be between 1 and 5"}

    def test_short_concerns_get_friendly_message(self):
        errors = validate_page(1, {**VALID_PAGE1, "primary_concerns": "Sad"})
        assert errors["primary_concerns"].startswith("Please provide more detail")

    def test_long_concerns_rejected(self):
        errors = validate_page(1, {**VALID_PAGE1, "primary_concerns": "x" * 2001})
        assert errors["primary_concerns"] == "Please keep your response under 2000 characters"

    def test_empty_page_reports_every_field(self):
        errors = validate_page(1, {})
        assert set(errors) == {"primary_concerns", "concern_duration", "concern_severity"}
        assert errors["concern_severity"] == "Please rate the severity of your concerns"

    def test_unknown_duration_rejected(self):
        errors = validate_page(1, {**VALID_PAGE1, "concern_duration": "forever"})
        assert errors == {
            "concern_duration": "Please select how long you've noticed these concerns"
        }

    def test_fields_of_other_pages_are_ignored(self):
        values = {**VALID_PAGE1, "therapy_goals": "x"}
        assert validate_page(1, values) == {}


class TestPage2:

    def test_empty_page_is_valid(self):
        assert validate_page(2, {}) == {}

    def test_blank_radio_is_unset(self):
        assert validate_page(2, {"sleep_patterns": "", "appetite_changes": ""}) == {}

    def test_invalid_option_rejected(self):
        errors = validate_page(2, {"social_relationships": "sometimes"})
        assert errors == {"social_relationships": "Please select a valid option"}


class TestPage3:

    def test_goals_required(self):
        errors = validate_page(3, {})
        assert errors == {
            "therapy_goals": "Please describe what you hope to achieve through therapy"
        }

    def test_recent_events_optional(self):
        assert validate_page(3, VALID_PAGE3) == {}

    def test_recent_events_length_limit(self):
        errors = validate_page(3, {**VALID_PAGE3, "recent_events": "x" * 1001})
        assert errors == {"recent_events": "Please keep your response under 1000 characters"}


class TestHelpers:

    def test_unknown_page(self):
        with pytest.raises(ValueError, match="Unknown form page"):
            validate_page(4, {})

    def test_validate_field(self):
        assert validate_field(1, "concern_severity", {"concern_severity": 9})
        assert validate_field(1, "concern_severity", {"concern_severity": 2}) is None

    def test_page_of(self):
        assert page_of("primary_concerns") == 1
        assert page_of("school_performance") == 2
        assert page_of("recent_events") == 3
        with pytest.raises(ValueError, match="Unknown form field"):
            page_of("favourite_colour")

    def test_pages_partition_all_fields(self):
        fields = [f for page in (1, 2, 3) for f in PAGE_FIELDS[page]]
        assert sorted(fields) == sorted(ALL_FIELDS)

    def test_wire_names(self):
        wire = form_to_wire({"primary_concerns": "x", "concern_severity": 2})
        assert wire == {"primaryConcerns": "x", "concernSeverity": 2}
        assert form_from_wire({**wire, "somethingElse": 1}) == {
            "primary_concerns": "x",
            "concern_severity": 2,
        }

    def test_combined_input_page2_omitted(self):
        form = FormAssessmentInput.model_validate({**VALID_PAGE1, **VALID_PAGE3})
        assert form.sleep_patterns is None
        assert form.recent_events is None


class TestCompletion:

    def test_empty_form(self):
        completion = form_completion({})

        assert completion.required_total == 4
        assert completion.optional_total == 5
        assert completion.required_complete == 0
        assert completion.overall_percentage == 0
        assert not completion.all_required_complete
        # Daily Life Impact has no required fields
        assert [s.complete for s in completion.sections] == [False, True, False]
        assert completion.section_percentage == 33

    def test_page_one_done(self):
        completion = form_completion(VALID_PAGE1)

        assert completion.required_complete == 3
        assert completion.overall_percentage == 75
        assert completion.sections[0].completed_count == 3
        assert completion.sections_complete == 2
        assert completion.section_percentage == 67

    def test_everything_required_done(self):
        completion = form_completion({**VALID_PAGE1, **VALID_PAGE3, "sleep_patterns": "no-change"})

        assert completion.all_required_complete
        assert completion.overall_percentage == 100
        assert completion.optional_complete == 1
        assert completion.section_percentage == 100

    @pytest.mark.parametrize(
        "field,value",
        [
            ("primary_concerns", "   too short   "),
            ("concern_severity", 0),
            ("concern_severity", "3"),
            ("concern_duration", ""),
            ("therapy_goals", None),
        ],
    )
    def test_incomplete_values(self, field, value):
        completion = form_completion({**VALID_PAGE1, **VALID_PAGE3, field: value})
        status = next(f for f in completion.fields if f.name == field)
        assert not status.complete
        assert completion.required_complete == 3

    def test_labels_in_page_order(self):
        completion = form_completion({})
        assert [f.label for f in completion.fields][:3] == [
            "Primary Concerns",
            "Duration of Concerns",
            "Severity Rating",
        ]
        assert [s.label for s in completion.sections] == [
            "About Your Child",
            "Daily Life Impact",
            "Additional Context",
        ]

    def test_serialised_camel_case(self):
        wire = form_completion(VALID_PAGE1).model_dump(by_alias=True)
        assert wire["overallPercentage"] == 75
        assert wire["sections"][0]["requiredCount"] == 3
