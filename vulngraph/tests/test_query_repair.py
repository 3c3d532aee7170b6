from __future__ import annotations

import pytest

from vulngraph.services.qa.query_repair import repair_query


def test_binds_anonymous_relationship_and_projects_it() -> None:
    outcome = repair_query("MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN f, a LIMIT 10")

    assert outcome.changed is True
    assert outcome.query == "MATCH (f:Finding)-[r:AFFECTS]->(a:Asset) RETURN f, a, r LIMIT 10"


def test_projects_named_relationship_that_was_left_out() -> None:
    outcome = repair_query("MATCH (f:Finding)-[rel:DETECTED_BY]->(s:Scanner) RETURN f, s ORDER BY f.severity")

    assert outcome.changed is True
    assert outcome.query == "MATCH (f:Finding)-[rel:DETECTED_BY]->(s:Scanner) RETURN f, s, rel ORDER BY f.severity"


def test_picks_fresh_variable_when_r_is_taken() -> None:
    outcome = repair_query("MATCH (r:Finding)<-[:AFFECTS]-(a:Asset) RETURN r, a;")

    assert outcome.changed is True
    assert outcome.query == "MATCH (r:Finding)<-[r1:AFFECTS]-(a:Asset) RETURN r, a, r1;"


def test_binds_variable_length_pattern_to_path() -> None:
    outcome = repair_query("MATCH (f1:Finding)-[:EXPLOIT_CHAIN*1..3]->(f2:Finding) RETURN f1, f2 LIMIT 5")

    assert outcome.changed is True
    assert outcome.query == (
        "MATCH path = (f1:Finding)-[:EXPLOIT_CHAIN*1..3]->(f2:Finding) RETURN f1, f2, path LIMIT 5"
    )


def test_projects_bound_path_that_was_left_out() -> None:
    outcome = repair_query("MATCH p = (f1:Finding)-[:SIMILAR_TO*]->(f2:Finding) RETURN f1, f2")

    assert outcome.changed is True
    assert outcome.query == "MATCH p = (f1:Finding)-[:SIMILAR_TO*]->(f2:Finding) RETURN f1, f2, p"


def test_literal_contents_do_not_confuse_the_rewrite() -> None:
    query = "MATCH (f:Finding {title: 'RETURN -[x]-> (y)'})-[:AFFECTS]->(a:Asset) RETURN f, a"

    outcome = repair_query(query)

    assert outcome.changed is True
    assert outcome.query == (
        "MATCH (f:Finding {title: 'RETURN -[x]-> (y)'})-[r:AFFECTS]->(a:Asset) RETURN f, a, r"
    )


@pytest.mark.parametrize(
    "query",
    [
        "MATCH (f:Finding)-[r:AFFECTS]->(a:Asset) RETURN f, r, a",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN f.title AS title, a.url AS url",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN a, count(f) AS findings",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset) WITH f, a RETURN f, a",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN f, a UNION MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN f, a",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset)-[:BELONGS_TO_SERVICE]->(s:Service) RETURN f, a, s",
        "MATCH (f:Finding) RETURN f",
        "MATCH (f:Finding)-[:AFFECTS]->(a:Asset) RETURN *",
        "MATCH path = (f1:Finding)-[:EXPLOIT_CHAIN*1..3]->(f2:Finding) RETURN path",
    ],
)
def test_leaves_unsupported_or_complete_queries_untouched(query: str) -> None:
    outcome = repair_query(query)

    assert outcome.changed is False
    assert outcome.query == query
    assert outcome.details.startswith("No repair applied")
