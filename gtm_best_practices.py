"""
Workspace best-practice checks.

A lighter companion to the rules engine that grades a set of tags,
triggers, variables and folders with error / warning / info findings.
"""

from typing import Dict, List

from gtm_utils import as_list

SEVERITY_PENALTIES = {
    'error': 15,
    'warning': 5,
    'info': 2
}

ANALYTICS_TAG_TYPES = ('gaawe', 'gawc', 'googtag')


def _issue(severity: str, issue_type: str, message: str, recommendation: str,
           entity: Dict = None, entity_type: str = None, id_field: str = None) -> Dict:
    issue = {
        'severity': severity,
        'type': issue_type,
        'message': message,
        'recommendation': recommendation
    }
    if entity is not None:
        issue['entityId'] = str(entity.get(id_field, ''))
        issue['entityName'] = entity['name'] if isinstance(entity.get('name'), str) else ''
        issue['entityType'] = entity_type
    return issue


def _repeated_names(entities: List[Dict]) -> List[str]:
    seen = set()
    repeated = []
    for entity in entities:
        name = entity.get('name')
        if not isinstance(name, str):
            continue
        if name in seen and name not in repeated:
            repeated.append(name)
        seen.add(name)
    return repeated


def check_best_practices(tags: List[Dict], triggers: List[Dict], variables: List[Dict],
                         folders: List[Dict] = None) -> Dict:
    """
    Grade a workspace. The score starts at 100 and loses 15 per error,
    5 per warning and 2 per info finding.
    """
    tags = [t for t in as_list(tags) if isinstance(t, dict)]
    triggers = [t for t in as_list(triggers) if isinstance(t, dict)]
    variables = [v for v in as_list(variables) if isinstance(v, dict)]
    folders = [f for f in as_list(folders) if isinstance(f, dict)]

    issues = []
    recommendations = []

    without_triggers = [t for t in tags if not as_list(t.get('firingTriggerId'))]
    stats = {
        'tags': {
            'total': len(tags),
            'paused': len([t for t in tags if t.get('paused')]),
            'withoutTriggers': len(without_triggers)
        },
        'triggers': {'total': len(triggers)},
        'variables': {'total': len(variables)},
        'folders': {'total': len(folders)}
    }

    for tag in tags:
        name = tag.get('name') if isinstance(tag.get('name'), str) else ''
        if not as_list(tag.get('firingTriggerId')):
            issues.append(_issue('warning', 'tag_without_trigger', f'Tag "{name}" has no firing triggers',
                                 'Add a firing trigger or delete the tag if unused', tag, 'tag', 'tagId'))
        if tag.get('paused'):
            issues.append(_issue('info', 'paused_tag', f'Tag "{name}" is paused',
                                 'Unpause if needed or delete if no longer required', tag, 'tag', 'tagId'))
        if name[:1].islower():
            issues.append(_issue('info', 'naming_convention', f'Tag "{name}" may not follow naming conventions',
                                 'Consider consistent names like "GA4 - Event Name" or "Google Ads - Conversion"',
                                 tag, 'tag', 'tagId'))

    duplicate_triggers = _repeated_names(triggers)
    if duplicate_triggers:
        issues.append(_issue('warning', 'duplicate_trigger_names',
                             f"Duplicate trigger names found: {', '.join(map(str, duplicate_triggers))}",
                             'Rename triggers to have unique names'))

    duplicate_tags = _repeated_names(tags)
    if duplicate_tags:
        issues.append(_issue('warning', 'duplicate_tag_names',
                             f"Duplicate tag names found: {', '.join(map(str, duplicate_tags))}",
                             'Rename tags to have unique names'))

    for variable in variables:
        name = variable.get('name') if isinstance(variable.get('name'), str) else ''
        if '{{' in name or '}}' in name:
            issues.append(_issue('warning', 'variable_naming', f'Variable "{name}" contains {{{{ }}}} in its name',
                                 'Use {{ }} only when referencing a variable, not in its name',
                                 variable, 'variable', 'variableId'))

    has_ga4 = any(t.get('type') in ANALYTICS_TAG_TYPES for t in tags)
    has_ua = any(t.get('type') == 'ua' for t in tags)
    if not has_ga4 and not has_ua:
        issues.append(_issue('info', 'missing_analytics', 'No analytics configuration found',
                             'Consider adding GA4 tracking for analytics insights'))
        recommendations.append('Add a GA4 configuration tag for analytics tracking')
    if has_ua:
        issues.append(_issue('warning', 'deprecated_ua', 'Universal Analytics tags found (deprecated)',
                             'Migrate to GA4, Universal Analytics no longer processes data'))
        recommendations.append('Migrate Universal Analytics tags to GA4')

    if not folders and len(tags) > 10:
        issues.append(_issue('info', 'folder_organization', 'No folders found with many tags',
                             'Organize tags, triggers and variables into folders'))
        recommendations.append('Create folders to organize tags and triggers')

    counts = {severity: len([i for i in issues if i['severity'] == severity]) for severity in SEVERITY_PENALTIES}
    score = 100 - sum(SEVERITY_PENALTIES[severity] * count for severity, count in counts.items())
    score = max(0, min(100, score))

    if not issues:
        recommendations.append('Workspace follows best practices!')
    else:
        if without_triggers:
            recommendations.append('Clean up tags without triggers')
        if counts['warning']:
            recommendations.append('Address warnings to improve workspace quality')
    if len(tags) > 50:
        recommendations.append('Consider auditing tags, large numbers of tags can impact performance')

    return {
        'score': score,
        'issues': issues,
        'recommendations': list(dict.fromkeys(recommendations)),
        'summary': {
            'totalIssues': len(issues),
            'errors': counts['error'],
            'warnings': counts['warning'],
            'info': counts['info']
        },
        'stats': stats
    }


def format_best_practices_result(result: Dict) -> str:
    lines = [f"BEST PRACTICES SCORE: {result['score']}/100", '=' * 80, '']

    summary = result['summary']
    lines.append('Summary:')
    lines.append(f"  Total issues: {summary['totalIssues']}")
    lines.append(f"  Errors: {summary['errors']}")
    lines.append(f"  Warnings: {summary['warnings']}")
    lines.append(f"  Info: {summary['info']}")
    lines.append('')

    stats = result['stats']
    lines.append('Stats:')
    lines.append(f"  Tags: {stats['tags']['total']} ({stats['tags']['paused']} paused, "
                 f"{stats['tags']['withoutTriggers']} without triggers)")
    lines.append(f"  Triggers: {stats['triggers']['total']}")
    lines.append(f"  Variables: {stats['variables']['total']}")
    lines.append(f"  Folders: {stats['folders']['total']}")
    lines.append('')

    for severity, heading in (('error', 'Errors'), ('warning', 'Warnings'), ('info', 'Info')):
        matching = [i for i in result['issues'] if i['severity'] == severity]
        if not matching:
            continue
        lines.append(f'{heading}:')
        for issue in matching:
            lines.append(f"  - {issue['message']}")
            lines.append(f"    -> {issue['recommendation']}")
        lines.append('')

    if result['recommendations']:
        lines.append('Recommendations:')
        for recommendation in result['recommendations']:
            lines.append(f'  - {recommendation}')

    return '\n'.join(lines)
