from __future__ import annotations

from bs4 import BeautifulSoup


# Live-only affordances; none of them may reach an exported page.
EXPORT_HIDDEN_SELECTORS: tuple[str, ...] = (
    '.editable-pencil',
    '.no-export',
    '.page-action-bar',
    '.translate-btn',
    '.restore-field-btn',
    '.btn-add-row',
    '.btn-remove-row',
    '.editable-hint',
    '.editable-placeholder',
)

_MODIFIED_CLASSES = {
    'issue-page--modified',
    'editable-display--modified',
    'editable-block-display--modified',
}


def _selected_label(select) -> str:
    option = select.find('option', selected=True) or select.find('option')
    if option is None:
        return ''
    return option.get_text(strip=True)


def prepare_export_fragment(fragment: str) -> str:
    """Return an export-ready copy of a preview unit.

    The input string is parsed into a fresh tree, so the live markup is never
    touched. Severity selects become static badges with the same colours.
    """
    soup = BeautifulSoup(fragment, 'html.parser')

    for selector in EXPORT_HIDDEN_SELECTORS:
        for node in soup.select(selector):
            node.decompose()

    for node in soup.find_all(class_=True):
        classes = [name for name in node.get('class', []) if name not in _MODIFIED_CLASSES]
        if classes:
            node['class'] = classes
        else:
            del node['class']

    for select in soup.select('select.severity-select'):
        badge = soup.new_tag('span')
        badge['class'] = ['severity-badge']
        if select.get('style'):
            badge['style'] = select['style']
        badge.string = _selected_label(select)
        select.replace_with(badge)

    return str(soup)
