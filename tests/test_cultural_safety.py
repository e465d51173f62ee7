"""Tests for cultural sensitivity classification and protocol checks."""
from barkly.models.database_models import CulturalProtocol, CulturalSensitivity
from barkly.services.cultural_safety import (
    analyze_cultural_safety,
    check_protocol_compliance,
    estimated_review_hours,
    max_level,
    review_priority,
)
from tests.conftest import PUBLIC_TEXT, SACRED_TEXT


def test_public_text():
    analysis = analyze_cultural_safety(PUBLIC_TEXT)

    assert analysis.level == CulturalSensitivity.PUBLIC
    assert analysis.confidence == 0.7
    assert analysis.flags == []
    assert not analysis.review_required
    assert not analysis.elder_approval_required
    assert "Review document for cultural references and context" in analysis.recommendations


def test_sacred_wins_over_lower_tiers():
    analysis = analyze_cultural_safety("The elder spoke about the initiation ceremony and cultural practice.")

    assert analysis.level == CulturalSensitivity.SACRED
    assert analysis.confidence == 0.9
    assert analysis.flags == ["Contains sacred or ceremonial content"]
    assert analysis.elder_approval_required


def test_restricted_keywords():
    analysis = analyze_cultural_safety("Traditional knowledge shared by an Elder.")

    assert analysis.level == CulturalSensitivity.RESTRICTED
    assert analysis.confidence == 0.8
    assert analysis.elder_approval_required


def test_community_keywords():
    analysis = analyze_cultural_safety("A community story about the river.")

    assert analysis.level == CulturalSensitivity.COMMUNITY
    assert analysis.review_required
    assert not analysis.elder_approval_required


def test_sensitive_content_lifts_public_to_community():
    analysis = analyze_cultural_safety("The family is in mourning this week.")

    assert analysis.level == CulturalSensitivity.COMMUNITY
    assert "Contains culturally sensitive content requiring careful handling" in analysis.flags


def test_sensitive_content_keeps_higher_level():
    analysis = analyze_cultural_safety("Sorry business and ceremony.")

    assert analysis.level == CulturalSensitivity.SACRED
    assert len(analysis.flags) == 2


def test_story_recommendations():
    analysis = analyze_cultural_safety(SACRED_TEXT, "story")

    assert analysis.recommendations[0] == "Requires elder approval before any sharing or publication"
    assert "Ensure storyteller has given appropriate permissions" in analysis.recommendations


def test_review_hours_and_priority():
    assert estimated_review_hours(CulturalSensitivity.SACRED) == 72
    assert estimated_review_hours(CulturalSensitivity.RESTRICTED) == 24
    assert estimated_review_hours(CulturalSensitivity.COMMUNITY) == 8
    assert estimated_review_hours(CulturalSensitivity.PUBLIC) == 2
    assert review_priority(CulturalSensitivity.SACRED) == "urgent"
    assert review_priority(CulturalSensitivity.RESTRICTED) == "high"
    assert review_priority(CulturalSensitivity.PUBLIC) == "medium"


def test_max_level():
    assert max_level([]) == CulturalSensitivity.PUBLIC
    assert max_level([CulturalSensitivity.COMMUNITY, CulturalSensitivity.PUBLIC]) == CulturalSensitivity.COMMUNITY
    assert max_level([CulturalSensitivity.SACRED, CulturalSensitivity.RESTRICTED]) == CulturalSensitivity.SACRED


def test_protocol_compliance():
    protocols = [
        CulturalProtocol(
            name="Naming protocol",
            protocol_type="naming",
            restrictions=["name of the deceased"],
            required_approvals=["family", "elder"],
            is_active=True,
        ),
        CulturalProtocol(
            name="Retired protocol",
            protocol_type="media",
            restrictions=["photograph"],
            required_approvals=["elder"],
            is_active=False,
        ),
    ]
    check = check_protocol_compliance(
        "The report used the Name of the Deceased and a photograph.", protocols
    )

    assert not check.compliant
    assert check.violations == ["Violates Naming protocol: name of the deceased"]
    assert check.required_approvals == ["family", "elder"]


def test_protocol_compliance_clean():
    check = check_protocol_compliance(PUBLIC_TEXT, [])
    assert check.compliant
    assert check.violations == []
