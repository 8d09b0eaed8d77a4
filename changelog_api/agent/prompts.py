"""Prompt templates for each changelog generation step.

The analysis step categorizes raw commits; the synthesis step turns the
analyses into a structured changelog. Both ask for raw JSON, but the parser
tolerates fences, prose and truncation anyway.
"""

from __future__ import annotations

import json
from typing import Any

# =============================================================================
# System Prompts
# =============================================================================

ANALYSIS_SYSTEM_PROMPT = "You are an expert at analyzing Git commits and categorizing software changes."

CHANGELOG_SYSTEM_PROMPT = """You are an expert technical writer and software engineer specializing in creating comprehensive, user-friendly changelogs from git commit data.

## Your Role
Generate professional changelogs that clearly communicate software changes to developers and end-users. Transform raw commit data into structured, meaningful release notes.

## Analysis Process
1. **Commit Classification**: Categorize each commit by type (feature, bugfix, breaking, enhancement, etc.)
2. **Impact Assessment**: Determine the significance and scope of each change
3. **Grouping Strategy**: Organize changes logically for maximum clarity
4. **Breaking Changes**: Identify and highlight any breaking changes with migration guidance

## Writing Style
- Use active voice and present tense
- Start with action verbs
- Focus on user benefit, not implementation
- Keep descriptions under 100 characters when possible

## Impact Classification
- **major**: Breaking changes, new major features, architectural changes
- **minor**: New features, significant enhancements, new APIs
- **patch**: Bug fixes, small improvements, documentation updates

## Response Format Rules
1. ALWAYS return valid JSON only
2. NO markdown code blocks around the JSON
3. NO explanatory text before or after JSON
4. Include ALL required fields, use empty arrays/strings if no data
5. Sort sections by importance (breaking changes first, then features, fixes, enhancements)"""


# =============================================================================
# Analysis Prompts
# =============================================================================

ANALYZE_COMMITS_PROMPT = """Analyze these Git commits and categorize each one. Return a JSON array where each object has:
- sha: the commit SHA
- type: one of "feature", "bugfix", "breaking", "docs", "refactor", "test", "chore"
- scope: optional component scope (e.g. "auth")
- description: cleaned up commit message (user-friendly)
- impact: "major", "minor", or "patch"
- breakingChange: boolean
- affectedComponents: array of component names mentioned
- userFacing: boolean (is this change visible to end users?)
- confidence: number 0-1 (how confident you are in the categorization)

Commits to analyze:
{commits}

Return only valid JSON array, no markdown or explanations."""


# =============================================================================
# Synthesis Prompts
# =============================================================================

CHANGELOG_EXAMPLE = """{{
  "version": "2025-01-07.cedar",
  "title": "Enhanced Authentication & Performance Improvements",
  "summary": "This release introduces OAuth2 authentication, improves API performance by 40%, and fixes critical security vulnerabilities.",
  "sections": [
    {{
      "id": "features",
      "title": "New Features",
      "order": 1,
      "changes": [
        {{
          "id": "feat-auth-oauth2",
          "description": "Add OAuth2 authentication with GitHub integration",
          "type": "feature",
          "impact": "minor",
          "tags": ["authentication", "oauth", "security"],
          "commits": ["abc123", "def456"],
          "pullRequests": [42],
          "author": "John Doe",
          "affectedComponents": ["authentication", "api"],
          "migrationGuide": "Update your authentication configuration to use the new OAuth2 flow",
          "codeExamples": {{
            "before": "auth.login(username, password)",
            "after": "auth.loginWithOAuth('github')"
          }}
        }}
      ]
    }},
    {{
      "id": "bugfixes",
      "title": "Bug Fixes",
      "order": 2,
      "changes": [
        {{
          "id": "fix-memory-leak",
          "description": "Fix memory leak in data processing pipeline",
          "type": "bugfix",
          "impact": "patch",
          "tags": ["performance", "memory"],
          "commits": ["ghi789"],
          "pullRequests": [43],
          "author": "Jane Smith",
          "affectedComponents": ["data-processing"],
          "migrationGuide": "",
          "codeExamples": {{}}
        }}
      ]
    }}
  ],
  "metadata": {{
    "totalCommits": 15,
    "contributors": 3,
    "filesChanged": 25,
    "linesAdded": 450,
    "linesRemoved": 120,
    "generationMethod": "ai",
    "breakingChanges": 0,
    "newFeatures": 2,
    "bugFixes": 3,
    "confidence": 0.85
  }},
  "migrationGuide": "",
  "acknowledgments": ["@johndoe", "@janesmith"]
}}"""

GENERATE_CHANGELOG_PROMPT = """Generate a comprehensive changelog for repository "{repository_name}".

## Repository Context
- Name: {repository_name}
- Branch: {branch}
- Date Range: {start_date} to {end_date}
- Target Audience: {target_audience}
- Group By: {group_by}
- Options: {options}

## Commit Analysis Data
{analyses}

## Requirements
1. Group changes into logical sections
2. Write {target_audience}-focused descriptions (benefits, not implementation)
3. Include migration guidance for breaking changes only
4. Reference the commit SHAs each change comes from
{inclusion_rules}
## Expected Output Structure
Use this EXACT JSON structure (no markdown blocks, just raw JSON):

""" + CHANGELOG_EXAMPLE + """
{custom_prompt}"""


# =============================================================================
# Editing Assistance Prompts
# =============================================================================

ENHANCE_DESCRIPTION_PROMPT = """Rewrite this changelog entry so it is clear, concise and benefit-focused.

## Entry
{description}

Respond with a JSON object following this schema:
{{
  "enhanced": "string",
  "suggestions": ["string"]
}}

"suggestions" lists up to three alternative phrasings. Return only JSON."""

SUGGEST_TAGS_PROMPT = """Suggest short lowercase tags (1-3 words each) that categorize this changelog entry.

## Entry
{description}

Return a JSON array of at most five strings, e.g. ["api", "performance"]. Return only JSON."""


# =============================================================================
# Helper Functions
# =============================================================================

def format_analyze_prompt(commit_lines: list[str]) -> str:
    """Format the analysis prompt with one ``sha: message`` line per commit."""
    return ANALYZE_COMMITS_PROMPT.format(commits="\n".join(commit_lines))


def _inclusion_rules(options: dict[str, Any]) -> str:
    rules = []
    if not options.get("include_breaking_changes", True):
        rules.append("- Omit breaking changes")
    if not options.get("include_features", True):
        rules.append("- Omit new features")
    if not options.get("include_bug_fixes", True):
        rules.append("- Omit bug fixes")
    if not options.get("include_documentation", False):
        rules.append("- Omit documentation-only changes")
    return "".join(f"{rule}\n" for rule in rules)


def format_generate_prompt(
    repository_name: str,
    branch: str,
    start_date: str,
    end_date: str,
    options: dict[str, Any],
    analyses: list[dict[str, Any]],
) -> str:
    """Format the synthesis prompt with the analyzed commits."""
    custom_prompt = options.get("custom_prompt")
    return GENERATE_CHANGELOG_PROMPT.format(
        repository_name=repository_name,
        branch=branch,
        start_date=start_date,
        end_date=end_date,
        target_audience=options.get("target_audience", "end-users"),
        group_by=options.get("group_by", "type"),
        options=json.dumps(options),
        analyses=json.dumps(analyses, indent=2),
        inclusion_rules=_inclusion_rules(options),
        custom_prompt=f"\n## Additional Instructions\n{custom_prompt}\n" if custom_prompt else "",
    )


def format_enhance_prompt(description: str) -> str:
    return ENHANCE_DESCRIPTION_PROMPT.format(description=description)


def format_suggest_tags_prompt(description: str) -> str:
    return SUGGEST_TAGS_PROMPT.format(description=description)
