# page_parser.py
# Page-level helpers used while crawling: metadata, outgoing links and
# template classification.

from bs4 import BeautifulSoup

TEMPLATE_PATH_KEYWORDS = [
    (('/blog/', '/news/'), 'article'),
    (('/product',), 'product'),
    (('/about',), 'about'),
    (('/contact',), 'contact'),
    (('/landing',), 'landing'),
]

ARTICLE_MARKERS = ('class="article', 'itemprop="articleBody"')
PRODUCT_MARKERS = ('class="product', 'itemprop="product"')


def infer_template_type(path, html):
    """Classify a page from its path, falling back to structural markers in the HTML"""
    if path in ('', '/'):
        return 'homepage'

    path_lower = path.lower()
    for keywords, template in TEMPLATE_PATH_KEYWORDS:
        if any(keyword in path_lower for keyword in keywords):
            return template

    html = html or ''
    if any(marker in html for marker in ARTICLE_MARKERS):
        return 'article'
    if any(marker in html for marker in PRODUCT_MARKERS):
        return 'product'
    return 'generic'


def extract_page_metadata(html):
    """Title, meta description and og:image, when present"""
    soup = BeautifulSoup(html or '', 'html.parser')
    metadata = {}

    if soup.title and soup.title.string and soup.title.string.strip():
        metadata['title'] = soup.title.string.strip()

    description = soup.find('meta', attrs={'name': 'description'})
    if description and description.get('content'):
        metadata['description'] = description['content']

    og_image = soup.find('meta', attrs={'property': 'og:image'})
    if og_image and og_image.get('content'):
        metadata['og_image'] = og_image['content']

    return metadata


def extract_link_targets(html):
    """Raw href values of all anchors, in document order"""
    soup = BeautifulSoup(html or '', 'html.parser')
    return [a['href'] for a in soup.find_all('a', href=True)]
