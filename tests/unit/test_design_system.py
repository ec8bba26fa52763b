"""
Unit tests for packages/extractor/design_system.py
"""
from packages.extractor.design_system import DEFAULT_BREAKPOINTS, build_design_system, is_neutral_color


class TestIsNeutralColor:
    """Tests for is_neutral_color function."""

    def test_named_neutrals(self):
        """Gray, white and black names are neutral."""
        for color in ['gray', 'LightGrey', 'white', 'black']:
            assert is_neutral_color(color) is True, f"Failed for: {color}"

    def test_near_equal_channels_are_neutral(self):
        """Hex and rgb colors with a small channel spread are neutral."""
        assert is_neutral_color('#f0f0f0') is True
        assert is_neutral_color('#333') is True
        assert is_neutral_color('rgb(10, 12, 14)') is True
        assert is_neutral_color('rgba(250, 250, 245, 0.5)') is True

    def test_saturated_colors_are_not_neutral(self):
        """Colors with a wide channel spread are not neutral."""
        assert is_neutral_color('#ff0000') is False
        assert is_neutral_color('#123') is False
        assert is_neutral_color('hsl(120, 50%, 50%)') is False


class TestBuildDesignSystem:
    """Tests for build_design_system function."""

    def test_merges_tokens_without_duplicates(self):
        """Colors, fonts and spacing are merged in first-seen order."""
        system = build_design_system(
            [
                {'colors': ['#ff0000', '#f0f0f0'], 'fonts': ['Roboto'], 'spacing': ['8px']},
                {'colors': ['#ff0000', '#0055aa'], 'fonts': ['Roboto', 'serif'], 'spacing': ['8px', '16px']},
                None,
            ],
            [],
        )
        assert system['colors']['primary'] == ['#ff0000', '#0055aa']
        assert system['colors']['neutral'] == ['#f0f0f0']
        assert system['typography']['fontFamilies'] == ['Roboto', 'serif']
        assert system['spacing']['values'] == ['8px', '16px']

    def test_later_variable_maps_win(self):
        """A CSS variable defined twice keeps the later value."""
        system = build_design_system([], [{'--brand': '#111', '--gap': '4px'}, {'--brand': '#222'}, None])
        assert system['css_variables'] == {'--brand': '#222', '--gap': '4px'}

    def test_default_breakpoints(self):
        """Breakpoints are the standard mobile, tablet and desktop widths."""
        system = build_design_system([], [])
        assert system['breakpoints'] == DEFAULT_BREAKPOINTS
        assert system['breakpoints'] is not DEFAULT_BREAKPOINTS
