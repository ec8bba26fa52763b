"""
Unit tests for packages/extractor/block_parser.py
"""
from bs4 import BeautifulSoup

from packages.extractor.block_parser import (
    clean_block_html,
    count_blocks,
    extract_blocks,
    extract_css_variables,
    extract_design_tokens,
    extract_variant,
    is_candidate_name,
)


def _element(html):
    return BeautifulSoup(html, 'html.parser').find(True)


class TestExtractBlocks:
    """Tests for extract_blocks function."""

    def test_empty_html_returns_empty_list(self):
        """Empty HTML should return empty list."""
        assert extract_blocks("") == []
        assert extract_blocks(None) == []

    def test_sample_page_blocks(self, sample_page_html):
        """Hero and cards are found, one per section, in document order."""
        blocks = extract_blocks(sample_page_html)
        assert [(b.name, b.variant, b.section_index) for b in blocks] == [
            ('hero', 'hero-dark', 0),
            ('cards', None, 1),
        ]

    def test_wrappers_and_rows_are_not_blocks(self, sample_page_html):
        """Wrapper divs and rows named after the block are folded into it."""
        names = [b.name for b in extract_blocks(sample_page_html)]
        assert 'hero-wrapper' not in names
        assert 'cards-card-body' not in names
        assert 'section-metadata' not in names

    def test_extraction_is_idempotent(self, sample_page_html):
        """Extracting twice yields the same names and cleaned markup."""
        first = extract_blocks(sample_page_html)
        second = extract_blocks(sample_page_html)
        assert [(b.name, b.cleaned_html) for b in first] == [(b.name, b.cleaned_html) for b in second]

    def test_main_is_used_without_sections(self):
        """A page without section containers is scanned from <main>."""
        html = "<html><body><main><div class='columns'><div><p>One</p></div></div></main></body></html>"
        blocks = extract_blocks(html)
        assert [(b.name, b.section_index) for b in blocks] == [('columns', 0)]

    def test_no_sections_and_no_main_yields_nothing(self):
        """Markup with neither sections nor <main> has no blocks."""
        assert extract_blocks("<html><body><div class='columns'></div></body></html>") == []

    def test_non_div_elements_are_ignored(self):
        """Only divs are block candidates."""
        html = "<main><span class='badge'>x</span><section class='teaser'></section></main>"
        assert extract_blocks(html) == []

    def test_same_name_once_per_section(self):
        """A repeated block name inside one section is kept once."""
        html = (
            "<main><div class='section'>"
            "<div class='quote'><p>a</p></div><div class='quote'><p>b</p></div>"
            "</div></main>"
        )
        blocks = extract_blocks(html)
        assert len(blocks) == 1
        assert '<p>a</p>' in blocks[0].html

    def test_nested_section_belongs_to_parent(self):
        """A section inside a section is not scanned separately."""
        html = (
            "<main><div class='section'>"
            "<div class='section'><div class='tabs'></div></div>"
            "</div></main>"
        )
        blocks = extract_blocks(html)
        assert [(b.name, b.section_index) for b in blocks] == [('tabs', 0)]

    def test_sibling_blocks_sharing_a_prefix(self):
        """A sibling block whose name extends an earlier one is its own block."""
        html = (
            "<main><div class='section'>"
            "<div class='hero'><div><h1>Hi</h1></div></div>"
            "<div class='hero-video'><div><p>Play</p></div></div>"
            "</div></main>"
        )
        assert [b.name for b in extract_blocks(html)] == ['hero', 'hero-video']

    def test_nested_block_with_other_name_is_kept(self):
        """Only descendants named after the enclosing block are folded into it."""
        html = (
            "<main><div class='section'>"
            "<div class='accordion'><div class='accordion-item'><div class='tabs'></div></div></div>"
            "</div></main>"
        )
        assert [b.name for b in extract_blocks(html)] == ['accordion', 'tabs']

    def test_count_blocks(self, sample_page_html):
        """count_blocks agrees with extract_blocks."""
        assert count_blocks(sample_page_html) == 2


class TestBlockDetails:
    """Tests for the per-block derived data."""

    def test_hero_tokens_and_content_model(self, sample_page_html):
        """Inline colors become tokens and the content model lists fields."""
        hero = extract_blocks(sample_page_html)[0]
        assert hero.design_tokens['colors'] == ['#ff0000']
        assert hero.content_model['requiredFields'] == ['heading']
        assert hero.content_model['optionalFields'] == ['paragraph', 'image']
        tags = [node['tag'] for node in hero.content_model['structure']]
        assert tags == ['h1', 'p', 'picture', 'source', 'img']

    def test_cleaned_html_strips_inline_style(self, sample_page_html):
        """The cleaned copy has no style attribute but keeps data-block-name."""
        hero = extract_blocks(sample_page_html)[0]
        assert 'style=' in hero.html
        assert 'style=' not in hero.cleaned_html
        assert 'data-block-name="hero"' in hero.cleaned_html

    def test_cards_links_in_content_model(self, sample_page_html):
        """Lists and links are optional fields of the cards block."""
        cards = extract_blocks(sample_page_html)[1]
        assert cards.content_model['requiredFields'] == []
        assert 'link' in cards.content_model['optionalFields']
        assert 'list' in cards.content_model['optionalFields']

    def test_javascript_detection(self):
        """Inline handlers mark a block as scripted and interactive."""
        html = "<main><div class='accordion'><button onclick='go()'>Open</button></div></main>"
        block = extract_blocks(html)[0]
        assert block.has_javascript is True
        assert block.has_interactivity is True

    def test_interactivity_without_javascript(self):
        """ARIA state attributes mark interactivity only."""
        html = "<main><div class='accordion'><div aria-expanded='false'>Q</div></div></main>"
        block = extract_blocks(html)[0]
        assert block.has_javascript is False
        assert block.has_interactivity is True


class TestCandidateNames:
    """Tests for is_candidate_name and extract_variant."""

    def test_deny_listed_names(self):
        """Layout, utility and system classes never name a block."""
        for name in ['section', 'button-container', 'default-content-wrapper', 'icon', 'picture', 'fragment']:
            assert is_candidate_name(name, name) is False, f"Failed for: {name}"

    def test_icon_and_wrapper_prefixes(self):
        """icon-* and *-wrapper / *-container classes are skipped."""
        assert is_candidate_name('icon-search', 'icon-search') is False
        assert is_candidate_name('hero-wrapper', 'hero-wrapper') is False
        assert is_candidate_name('hero-container', 'hero-container') is False

    def test_regular_block_name(self):
        """Ordinary block names are candidates."""
        assert is_candidate_name('hero', 'hero block') is True

    def test_variant_ignores_generic_classes(self):
        """block, wrapper and inview-* classes are not variants."""
        assert extract_variant('hero', ['hero', 'block', 'inview-fade', 'hero-wide']) == 'hero-wide'
        assert extract_variant('hero', ['hero', 'hero-wrapper']) is None
        assert extract_variant('hero', ['hero', 'dark']) is None


class TestCleanBlockHtml:
    """Tests for clean_block_html function."""

    def test_removes_styles_and_data_attributes(self):
        """Inline styles, data-* attributes and empty classes are dropped."""
        element = _element(
            '<div class="quote" style="color:red" data-foo="1" data-block-name="quote">'
            '<p class="">  Hello   world </p></div>'
        )
        assert clean_block_html(element) == '<div class="quote" data-block-name="quote"><p> Hello world </p></div>'


class TestTokenHelpers:
    """Tests for extract_design_tokens and extract_css_variables."""

    def test_design_tokens(self):
        """Colors, fonts and spacing are collected without duplicates."""
        tokens = extract_design_tokens(
            'font-family: Roboto, sans-serif; padding: 8px 16px; color: rgb(1, 2, 3); color: #abc; color: #abc'
        )
        assert tokens['fonts'] == ['Roboto', 'sans-serif']
        assert tokens['spacing'] == ['8px', '16px']
        assert '#abc' in tokens['colors']
        assert tokens['colors'].count('#abc') == 1
        assert 'rgb(1, 2, 3)' in tokens['colors']
        assert tokens['breakpoints'] == []

    def test_css_variables(self):
        """var() fallbacks are recorded and declarations override them."""
        variables = extract_css_variables('color: var(--brand, #333); margin: var(--gap); --gap: 8px')
        assert variables == {'--brand': '#333', '--gap': '8px'}
