# tests/services/test_workspace_filter.py
"""
Tests for the workspace filter fallback and workspace scoring

Run with: pytest tests/services/test_workspace_filter.py -v
"""

from types import SimpleNamespace

from leadrouter.services.workspace_filter import check_filters, find_best_workspace, score_workspace


def make_workspace(industries=None, regions=None, name="ws"):
    return SimpleNamespace(
        id=name,
        name=name,
        allowed_industries=industries or [],
        allowed_regions=regions or [],
    )


# ============================================================================
# TEST: check_filters
# ============================================================================

class TestCheckFilters:
    """Test the no-rule fallback verdict"""

    def test_missing_workspace(self, sample_lead):
        """Test unknown workspace yields zero confidence"""
        result = check_filters(sample_lead, None)

        assert result.match is False
        assert result.reason == "Workspace not found"
        assert result.confidence == 0.0

    def test_open_workspace_matches(self, sample_lead):
        """Test empty allow-lists accept any lead"""
        result = check_filters(sample_lead, make_workspace())

        assert result.match is True
        assert result.confidence == 0.7

    def test_industry_allow_list(self, sample_lead):
        """Test industry allow-list match with open regions"""
        result = check_filters(sample_lead, make_workspace(industries=["Technology"]))
        assert result.match is True
        assert result.reason == "Matches workspace filters"

    def test_industry_mismatch(self, sample_lead):
        """Test industry outside the allow-list falls back to 0.5"""
        result = check_filters(sample_lead, make_workspace(industries=["Healthcare"]))

        assert result.match is False
        assert result.confidence == 0.5
        assert "kept in source workspace" in result.reason

    def test_region_list_accepts_country_or_state(self, sample_lead):
        """Test allowed_regions accepts either the country or the state code"""
        assert check_filters(sample_lead, make_workspace(regions=["US"])).match is True
        assert check_filters(sample_lead, make_workspace(regions=["CA"])).match is True
        assert check_filters(sample_lead, make_workspace(regions=["GB"])).match is False

    def test_missing_industry_fails_non_empty_list(self, sample_lead):
        """Test a lead without an industry fails an industry allow-list"""
        sample_lead.company_industry = None
        assert check_filters(sample_lead, make_workspace(industries=["Technology"])).match is False


# ============================================================================
# TEST: Workspace scoring
# ============================================================================

class TestFindBestWorkspace:
    """Test best-candidate workspace scoring"""

    def test_score_components(self, sample_lead):
        """Test explicit matches outscore open lists"""
        assert score_workspace(sample_lead, make_workspace(["Technology"], ["CA"])) == 15
        assert score_workspace(sample_lead, make_workspace()) == 7
        assert score_workspace(sample_lead, make_workspace(["Finance"], ["NY"])) == 0

    def test_best_workspace_selected(self, sample_lead):
        """Test highest score wins"""
        open_ws = make_workspace(name="open")
        tech_ws = make_workspace(industries=["Technology"], name="tech")

        assert find_best_workspace(sample_lead, [open_ws, tech_ws]) is tech_ws

    def test_no_candidates(self, sample_lead):
        """Test None for an empty candidate list or all-zero scores"""
        assert find_best_workspace(sample_lead, []) is None
        assert find_best_workspace(sample_lead, [make_workspace(["Finance"], ["NY"])]) is None
