"""
Tests for local problem analysis.
"""

from automcm.tools.analyzer import ProblemAnalyzer, SolutionDatabase, summarize


class TestProblemAnalyzer:
    def test_routing_problem(self):
        analysis = ProblemAnalyzer().analyze("Optimize vehicle routing to minimize response time")

        assert analysis.model_types[0] == "optimization"
        assert "network" in analysis.model_types
        assert "linear programming" in analysis.techniques
        assert len(analysis.techniques) <= 5
        assert analysis.archetypes[0]["name"] == "Constrained Optimization"
        assert analysis.historical_solutions
        assert all("optimization" in s["model_types"] for s in analysis.historical_solutions)

    def test_domain_keywords_and_data_needs(self):
        analysis = ProblemAnalyzer().analyze(
            "Forecast energy demand under climate uncertainty and recommend a policy"
        )
        assert {"climate", "energy"} <= set(analysis.keywords)
        assert "Climate data (NOAA, NASA)" in analysis.data_needs
        assert "Energy data (EIA, IEA)" in analysis.data_needs
        assert "Recommendations and policy implications" in analysis.deliverables
        assert analysis.complexity == "high"

    def test_unclassified_problem_defaults(self):
        analysis = ProblemAnalyzer().analyze("A simple question about nothing in particular")

        assert analysis.model_types == []
        assert analysis.techniques == []
        assert analysis.complexity == "low"
        assert analysis.data_needs == ["Domain-specific datasets", "Historical data for validation"]
        assert "Summary sheet (1 page)" in analysis.deliverables

    def test_to_dict(self):
        data = ProblemAnalyzer().analyze("Simulate traffic flow through a network").to_dict()
        assert set(data) >= {"keywords", "model_types", "techniques", "historical_solutions", "complexity"}


class TestSolutionDatabase:
    def test_ranked_by_relevance(self):
        results = SolutionDatabase().smart_search(["ecology", "sustainability"])
        assert results[0]["relevance_score"] >= results[-1]["relevance_score"]
        assert {r["id"] for r in results} >= {"mcm2023-b-finalist", "mcm2020-e-finalist"}

    def test_filter_by_model_type(self):
        results = SolutionDatabase().smart_search([], model_type="network")
        assert [r["id"] for r in results] == ["mcm2021-d-outstanding"]

    def test_custom_solutions(self):
        db = SolutionDatabase([{
            "id": "x", "year": 2000, "problem": "A", "award": "M", "title": "Bees",
            "summary": "Hive dynamics", "keywords": ["ecology"], "model_types": ["simulation"], "techniques": [],
        }])
        assert db.smart_search(["bees"])[0]["id"] == "x"


class TestSummarize:
    def test_markdown_sections(self):
        text = summarize(ProblemAnalyzer().analyze("Predict population growth"))
        assert text.startswith("# Problem Analysis Summary")
        for heading in ("## Identified Characteristics", "## Recommended Techniques", "## Similar Historical Solutions"):
            assert heading in text
        assert "- [ ] " in text

    def test_empty_analysis(self):
        text = summarize(ProblemAnalyzer().analyze("nothing"))
        assert "Not identified" in text
        assert "- No specific archetypes identified" in text
