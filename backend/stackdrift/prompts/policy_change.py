"""Prompt for assessing the business risk of a vendor policy change."""

POLICY_CHANGE_PROMPT = """You are analyzing a policy/TOS change for "{document_label}", a tool used by indie developers and SaaS founders. Write as if briefing a busy founder who has 30 seconds to decide if this matters to their business.

## Sentences ADDED
{added_sentences}

## Sentences REMOVED
{removed_sentences}{truncation_note}
{effective_date_line}
## Keyword analysis
Our keyword analysis detected these risk categories (a hint, not ground truth):
{detected_buckets}

## Risk categories to consider
- ownership: Who owns generated code, IP rights, licensing, liability
- training: Whether your code/data trains their AI models
- visibility: Project privacy defaults, public/private settings
- export: Can you leave the platform, self-host, data portability
- pricing: Commercial use limits, pricing changes, usage quotas
- deprecation: Model retirements, API version sunsets, migration deadlines

## Fields
- summary: One sentence. What changed and why a founder should care. Lead with the business consequence, not the legalese.
- impact: One to two sentences. Who is affected and how. Reference dollar amounts, deadlines, or workflow changes when applicable.
- action: One sentence. What to do right now.
- suggestedRiskLevel: "low", "medium" or "high"
- isNoise: true if this is a non-substantive change (language translations, tracking ID rotations, session tokens, whitespace/formatting, internal reference numbers). false for everything else; even low-risk changes like contact email updates are NOT noise.

## Risk levels
- low: Minor wording changes, clarifications, contact info updates. No material impact.
- medium: Changes worth noting: visibility defaults, pricing adjustments, new usage caps, export tweaks.
- high: Significant restrictions or policy shifts: IP/ownership or licensing changes, training data opt-outs removed, model deprecations with deadlines, major export limitations, service discontinuation.

Use your judgment of the actual content over the keyword hints: keyword matching cannot tell a translation from a substantive rewrite.

## Examples of the expected tone and specificity

Low (noise, tracking ID rotation):
{{
  "summary": "An internal tracking ID was rotated; no policy content changed.",
  "impact": "None. This is a technical artifact, not a policy change.",
  "action": "No action required.",
  "suggestedRiskLevel": "low",
  "isNoise": true
}}

Medium (pricing cap change):
{{
  "summary": "Free tier build minutes cut in half, so you'll hit the cap faster if you deploy often.",
  "impact": "Solo founders deploying more than twice a day on the Hobby plan will burn through the new 3,000/mo cap by mid-month. CI/CD-heavy projects are hit first.",
  "action": "Check build minute usage in your dashboard; if you're over 3,000/mo, budget $20/mo for Pro or deploy less often.",
  "suggestedRiskLevel": "medium",
  "isNoise": false
}}

High (training data change):
{{
  "summary": "The opt-out for AI model training on private repos has been removed: your code is now training data.",
  "impact": "Anyone building proprietary software or working under client NDAs now has private code in the training set with no way to prevent it, a compliance risk for contracts with data handling clauses.",
  "action": "Move sensitive repos to another platform before the next training cycle and review client contracts for conflicting clauses.",
  "suggestedRiskLevel": "high",
  "isNoise": false
}}

IMPORTANT: If the changes are purely linguistic or a language translation (e.g. Spanish to English, or any language switch) with no substantive policy change, this is ALWAYS "low" risk and isNoise: true, regardless of which keywords appear.

## Output
Return ONLY a JSON object:
{{
  "summary": "...",
  "impact": "...",
  "action": "...",
  "suggestedRiskLevel": "low" | "medium" | "high",
  "isNoise": true | false
}}

Return ONLY valid JSON, no explanation or markdown code fences."""
