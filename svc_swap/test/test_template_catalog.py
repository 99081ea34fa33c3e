import pytest

from svc_swap.api.routes.screener_questions import select_questions
from svc_swap.api.routes.user_profile import preferences_from_answers
from svc_swap.domain.enums import RecommendationMode
from svc_swap.domain.models import ScreenerQuestion, Template, UserProfile
from svc_swap.services import template_catalog as catalog


@pytest.fixture
def templates():
    """Small catalog: two brand templates and one shared"""
    return [
        Template(id="a", title="Party Night", usage_count=5, website_url="shop.test",
                 metadata={"occasion": ["party"]}),
        Template(id="b", title="Wedding", usage_count=50, metadata={"occasion": ["wedding"]}),
        Template(id="c", title="Office", usage_count=20, website_url="other.test",
                 metadata={"occasion": ["professional"]}),
    ]


def test_template_from_row_fills_categories():
    t = catalog.template_from_row(
        {"id": "x", "title": "Cake", "categories": [], "metadata": {"occasion": ["birthday", "beach"]}}
    )
    assert t.categories == ["trending", "birthday"]

    kept = catalog.template_from_row({"id": "y", "categories": ["featured"], "metadata": {}})
    assert kept.categories == ["featured"]


def test_filter_by_domain_keeps_shared(templates):
    assert [t.id for t in catalog.filter_by_domain(templates, "shop.test")] == ["a", "b"]
    assert len(catalog.filter_by_domain(templates, None)) == 3


def test_list_all_sorts_by_usage(templates):
    out = catalog.list_templates(templates, limit=2)
    assert [t["id"] for t in out["templates"]] == ["b", "c"]
    assert "scores" not in out


def test_search_wins_over_occasion_and_mode(templates):
    out = catalog.list_templates(
        templates, search="office", occasion="party", mode=RecommendationMode.recommended, authenticated=True
    )
    assert [t["id"] for t in out["templates"]] == ["c"]


def test_occasion_filter(templates):
    out = catalog.list_templates(templates, occasion="party")
    assert [t["id"] for t in out["templates"]] == ["a"]


def test_recommended_without_auth_falls_back_to_trending(templates):
    out = catalog.list_templates(templates, mode=RecommendationMode.recommended)
    assert [t["id"] for t in out["templates"]] == ["b", "c", "a"]
    assert "scores" not in out


def test_recommended_returns_scores(templates):
    profile = UserProfile(user_id="u", preferred_occasions=["party"])
    out = catalog.list_templates(
        templates, mode=RecommendationMode.recommended, profile=profile, authenticated=True
    )
    assert out["templates"][0]["id"] == "a"
    first = out["scores"][0]
    assert first["templateId"] == "a"
    assert set(first["breakdown"]) == {"exactMatch", "partialMatch", "popularity", "quality", "behavioral", "novelty"}


def _question(qid, order, active=True):
    return ScreenerQuestion(id=qid, order=order, is_active=active, option_keys=["x"])


def test_select_questions_skips_answered_and_inactive():
    questions = [_question("q1", 1), _question("q2", 2, active=False), _question("q3", 3), _question("q4", 4)]
    page = select_questions(questions, ["q1"], limit=1)
    assert [q.id for q in page.questions] == ["q3"]
    assert page.total_available == 2
    assert page.answered_count == 1
    assert page.has_more

    everything = select_questions(questions, ["q1"], limit=10, include_answered=True)
    assert len(everything.questions) == 4
    assert not everything.has_more


def test_preferences_from_answers():
    prefs = preferences_from_answers(
        {
            "survey.screener.questions.bodyType": ["athletic"],
            "survey.screener.questions.occasions": ["party", "party", "wedding"],
            "stylePreference": ["elegant"],
            "survey.screener.questions.favoriteColor": ["blue"],
            "mood": [],
        }
    )
    assert prefs == {
        "preferred_body_type": ["athletic"],
        "preferred_occasions": ["party", "wedding"],
        "preferred_style": ["elegant"],
    }


def test_preferences_from_question_ids_use_category():
    q_body, q_occ, q_style, q_other = (
        "0b7e2f7c-1d4a-4f55-9a61-2d1c3c7a0001",
        "0b7e2f7c-1d4a-4f55-9a61-2d1c3c7a0002",
        "0b7e2f7c-1d4a-4f55-9a61-2d1c3c7a0003",
        "0b7e2f7c-1d4a-4f55-9a61-2d1c3c7a0004",
    )
    prefs = preferences_from_answers(
        {
            q_body: ["curvy"],
            q_occ: ["birthday"],
            q_style: ["vintage"],
            q_other: ["blue"],
            "survey.screener.questions.mood": ["playful"],
        },
        {q_body: "preferences", q_occ: "occasions", q_style: "style", q_other: None},
    )
    assert prefs == {
        "preferred_body_type": ["curvy"],
        "preferred_occasions": ["birthday"],
        "preferred_style": ["vintage"],
        "preferred_mood": ["playful"],
    }


def test_sign_template_images_signs_refs_without_mutating():
    stored = Template(
        id="x",
        image_url="templates/x/main.png",
        variant_image_urls=["templates/x/variant_0.png"],
    )
    signed = catalog.sign_template_images(stored, lambda ref: f"https://signed.test/{ref}" if ref else None)

    assert signed.image_url == "https://signed.test/templates/x/main.png"
    assert signed.variant_image_urls == ["https://signed.test/templates/x/variant_0.png"]
    assert signed.thumbnail_url is None
    assert stored.image_url == "templates/x/main.png"
