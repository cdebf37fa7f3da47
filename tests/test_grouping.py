from __future__ import annotations

from auditreport.grouping import (
    DEFAULT_SEVERITY_COLOR,
    canonical_order,
    detect_default_prefix,
    get_severity_color,
    group_by_category,
    paginate_groups,
    plan_finding_ids,
    severity_rank,
)


def test_categories_sorted_and_severity_ordered(issue_factory):
    issues = [
        issue_factory(1, category='Crypto', overall_risk='Low'),
        issue_factory(2, category='Auth', overall_risk='Low'),
        issue_factory(3, category='Auth', overall_risk='Critical'),
        issue_factory(4, category='Crypto', overall_risk='info'),
        issue_factory(5, category='Crypto', overall_risk='High'),
    ]
    groups = group_by_category(issues)

    assert [group.category for group in groups] == ['Auth', 'Crypto']
    assert [issue.id for issue in groups[0].issues] == [3, 2]
    assert [issue.id for issue in groups[1].issues] == [5, 1, 4]


def test_ties_keep_input_order(issue_factory):
    issues = [issue_factory(i, category='Web', overall_risk='Medium') for i in (7, 3, 9)]

    assert [issue.id for issue in canonical_order(issues)] == [7, 3, 9]


def test_unknown_severity_sorts_last(issue_factory):
    issues = [
        issue_factory(1, category='Web', overall_risk='Whatever'),
        issue_factory(2, category='Web', overall_risk='Informational'),
    ]

    assert severity_rank('Whatever') == 5
    assert [issue.id for issue in canonical_order(issues)] == [2, 1]


def test_missing_category_is_uncategorized(issue_factory):
    groups = group_by_category([issue_factory(1, category='')])

    assert groups[0].category == 'Uncategorized'


def test_category_names_compare_without_case_or_accents(issue_factory):
    issues = [
        issue_factory(1, category='zeta'),
        issue_factory(2, category='Écoute'),
        issue_factory(3, category='apple'),
        issue_factory(4, category='Banana'),
    ]

    assert [group.category for group in group_by_category(issues)] == ['apple', 'Banana', 'Écoute', 'zeta']


def test_grouping_is_idempotent(issue_factory):
    issues = [issue_factory(i, category=c, overall_risk=r) for i, (c, r) in enumerate(
        [('B', 'Low'), ('A', 'High'), ('B', 'Critical'), ('A', 'High')], start=1
    )]
    once = canonical_order(issues)

    assert canonical_order(once) == once


def test_severity_colors():
    assert get_severity_color('CRITICAL').bg == '#8b0000'
    assert get_severity_color('high').bg == '#e74c3c'
    assert get_severity_color('Low').text == '#333333'
    assert get_severity_color('informational') == get_severity_color('info')
    assert get_severity_color('') == DEFAULT_SEVERITY_COLOR
    assert get_severity_color('severe') == DEFAULT_SEVERITY_COLOR


def test_page_numbers_follow_canonical_order(issue_factory):
    issues = [
        issue_factory(1, category='B'),
        issue_factory(2, category='A'),
        issue_factory(3, category='A', overall_risk='High'),
    ]
    paged = paginate_groups(issues)

    assert [(item.issue.id, item.page_number) for group in paged for item in group.issues] == [
        (3, 1),
        (2, 2),
        (1, 3),
    ]


def test_finding_ids_restart_per_category_block(issue_factory):
    issues = [
        issue_factory(1, category='Auth', overall_risk='Low', finding_id='XYZ-9'),
        issue_factory(2, category='Auth', overall_risk='High', finding_id=''),
        issue_factory(3, category='Crypto', overall_risk='Medium', finding_id=''),
    ]
    prefix = detect_default_prefix(issues)

    assert prefix == 'XYZ'
    assert plan_finding_ids(issues, prefix) == {2: 'XYZ-0001', 1: 'XYZ-0002', 3: 'XYZ-1001'}


def test_default_prefix_falls_back(issue_factory):
    assert detect_default_prefix([issue_factory(1, finding_id='0042')]) == 'ABC'
    assert detect_default_prefix([]) == 'ABC'


def test_reindex_scenario_two_and_three_issues(issue_factory):
    issues = [issue_factory(i, category='Network', overall_risk='Medium') for i in (1, 2)]
    issues += [issue_factory(i, category='Web', overall_risk='Medium') for i in (3, 4, 5)]

    assert plan_finding_ids(issues, 'ABC') == {
        1: 'ABC-0001',
        2: 'ABC-0002',
        3: 'ABC-1001',
        4: 'ABC-1002',
        5: 'ABC-1003',
    }
