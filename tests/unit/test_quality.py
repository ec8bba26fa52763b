"""
Unit tests for packages/scorer/quality.py
"""
from packages.scorer.quality import (
    WEIGHTS,
    get_tier,
    overall_from_breakdown,
    round_half_up,
    score_accessibility,
    score_block,
    score_code_quality,
    score_eds_compliance,
    score_performance,
)

CLEAN_BLOCK = (
    '<div class="hero block">\n'
    '  <div>\n'
    '    <div>\n'
    '      <h2>Title</h2>\n'
    '      <p>Intro</p>\n'
    '      <picture><source srcset="/a.webp"><img src="/a.png" alt="A" loading="lazy" width="10" height="10"></picture>\n'
    '    </div>\n'
    '  </div>\n'
    '</div>'
)

MESSY_BLOCK = (
    '<div class="w-1 p-2 m-3 x-4 y-5 z-6" style="a" style="b" style="c" style="d" style="e" style="f">'
    '<script>alert(1)</script><font>old</font><center>x</center>'
    '<img src="a.png"><img src="b.png"><a href="">x</a>'
    '<div onclick="go()" data-reactroot="" title="" id="" name="">'
    '<h1>a</h1><h4>b</h4></div></div>'
)


class TestTiers:
    """Tests for get_tier and rounding."""

    def test_tier_boundaries(self):
        """Thresholds are inclusive at 98, 93 and 85."""
        cases = {100: 'gold', 98: 'gold', 97: 'silver', 93: 'silver', 92: 'bronze', 85: 'bronze', 84: 'unrated', 0: 'unrated'}
        for score, tier in cases.items():
            assert get_tier(score) == tier, f"Failed for: {score}"

    def test_round_half_up(self):
        """Halves round up rather than to even."""
        assert round_half_up(92.5) == 93
        assert round_half_up(84.5) == 85
        assert round_half_up(84.49) == 84
        assert round_half_up(0.5) == 1

    def test_weights_sum_to_one(self):
        """The six axis weights add up to one."""
        assert abs(sum(WEIGHTS.values()) - 1.0) < 1e-9

    def test_overall_is_weighted_sum(self):
        """Uniform axes give the same overall score."""
        for value in (0, 50, 90, 100):
            assert overall_from_breakdown({axis: value for axis in WEIGHTS}) == value


class TestScoreBlock:
    """Tests for score_block function."""

    def test_result_shape_and_bounds(self):
        """Every axis and the overall score stay within 0-100."""
        for html in (CLEAN_BLOCK, MESSY_BLOCK, '', None):
            result = score_block(html)
            assert set(result['breakdown']) == set(WEIGHTS)
            assert all(0 <= value <= 100 for value in result['breakdown'].values())
            assert 0 <= result['overall'] <= 100
            assert result['overall'] == overall_from_breakdown(result['breakdown'])
            assert result['tier'] == get_tier(result['overall'])

    def test_clean_block_beats_messy_block(self):
        """Well-formed markup scores higher than markup with known problems."""
        assert score_block(CLEAN_BLOCK)['overall'] > score_block(MESSY_BLOCK)['overall']

    def test_clean_block_has_no_issues(self):
        """A tidy block raises no issues."""
        assert score_block(CLEAN_BLOCK)['issues'] == []

    def test_messy_block_issues(self):
        """Scripts, handlers, deprecated tags and framework markers are reported."""
        messages = [issue['message'] for issue in score_block(MESSY_BLOCK)['issues']]
        assert 'Inline scripts detected' in messages
        assert 'Deprecated HTML elements used' in messages
        assert 'Inline event handlers detected (1)' in messages
        assert 'Framework artifacts detected (blocks should be vanilla HTML)' in messages
        assert 'Heading levels skipped' in messages

    def test_issue_fields(self):
        """Issues carry category, severity and message."""
        for issue in score_block(MESSY_BLOCK)['issues']:
            assert set(issue) == {'category', 'severity', 'message'}
            assert issue['severity'] in ('info', 'warning', 'error')


class TestAxes:
    """Tests for individual axis scorers."""

    def test_empty_markup_performance(self):
        """Empty markup earns every performance bonus."""
        score, issues = score_performance('')
        assert score == 100
        assert issues == []

    def test_empty_markup_accessibility(self):
        """Empty markup gets the neutral accessibility bonuses."""
        score, _ = score_accessibility('')
        assert score == 87

    def test_large_markup_is_penalized(self):
        """Very large blocks lose performance points and report the size."""
        score, issues = score_performance('<p>' + 'x' * 40000 + '</p>')
        assert score < 100
        assert any('Large block HTML' in issue['message'] for issue in issues)

    def test_decorative_alt_is_not_an_empty_attribute(self):
        """alt="" is allowed on decorative images."""
        with_alt, issues_alt = score_code_quality('<img alt="">\n<p>a</p>\n<p>b</p>\n<p>c</p>')
        assert not any('empty attributes' in issue['message'] for issue in issues_alt)
        assert with_alt > 0

    def test_javascript_links_hurt_compliance(self):
        """javascript: links score lower than real links."""
        good, _ = score_eds_compliance('<a href="/x">x</a>')
        bad, _ = score_eds_compliance('<a href="javascript:void(0)">x</a>')
        assert good > bad

    def test_dead_links_hurt_accessibility(self):
        """Bare-fragment and empty targets score lower than a real link."""
        good, _ = score_accessibility('<div class="cards"><a href="/docs">Read more</a></div>')
        for anchor in ('<a href="#">Read more</a>', '<a href="">Read more</a>', "<a href=' # '>Read more</a>",
                       '<a>Read more</a>'):
            bad, _ = score_accessibility(f'<div class="cards">{anchor}</div>')
            assert bad < good, f"Failed for: {anchor}"

    def test_dead_links_hurt_compliance(self):
        """A bare # link loses compliance points."""
        good, _ = score_eds_compliance('<div class="cards"><a href="/docs">Read more</a></div>')
        bad, _ = score_eds_compliance('<div class="cards"><a href="#">Read more</a></div>')
        assert good > bad

    def test_fragment_links_are_real_links(self):
        """In-page anchors and non-anchor tags starting with a are not dead links."""
        good, _ = score_accessibility('<a href="/docs">x</a>')
        assert score_accessibility('<a href="#pricing">x</a>')[0] == good
        assert score_accessibility('<article><aside>x</aside></article>')[0] == score_accessibility('')[0]
