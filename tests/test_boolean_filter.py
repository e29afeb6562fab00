from matchcore import models
from matchcore.pipelines.search import build_searchable_text, matches_boolean_query

QUERY = "react and (remote or hybrid) and not junior"


def test_all_clauses_satisfied():
    assert matches_boolean_query(QUERY, "senior react developer, remote")


def test_or_alternative_satisfies_clause():
    assert matches_boolean_query(QUERY, "react developer open to hybrid work")


def test_excluded_term_rejects():
    assert not matches_boolean_query(QUERY, "junior react developer, remote")


def test_missing_required_clause_rejects():
    assert not matches_boolean_query(QUERY, "vue developer, remote")
    assert not matches_boolean_query(QUERY, "react developer, onsite")


def test_empty_query_matches_everything():
    assert matches_boolean_query("   ", "anything")


def test_quoted_alternatives_are_unquoted():
    assert matches_boolean_query('"machine learning" and python', "python and machine learning")


def test_searchable_text_covers_resume_profile_and_experience():
    candidate = models.Candidate(
        headline="Frontend Lead",
        bio="<p>Remote first</p>",
        skills=["React"],
        resume_normalized_text="EXPERIENCE\nacme corp",
        experience=[{"title": "Engineer", "company": "Globex", "description": "<b>Hybrid</b> team"}],
    )
    text = build_searchable_text(candidate)
    for fragment in ("frontend lead", "remote first", "react", "acme corp", "globex", "hybrid team"):
        assert fragment in text


def test_searchable_text_skips_malformed_entries():
    candidate = models.Candidate(
        headline="Backend engineer",
        skills=5,
        experience=["Acme 2019-2021", {"title": "SRE", "company": "Initech"}],
    )
    text = build_searchable_text(candidate)
    assert "backend engineer" in text
    assert "sre initech" in text
    assert "acme" not in text
