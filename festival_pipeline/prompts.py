IMAGE_TEXT_PROMPT = """
Extract all visible text from this image. The text may be in English, Persian or both.
Prioritise accuracy and return only the extracted text.
""".strip()

STRUCTURED_INFO_PROMPT = """
You extract information from photography contest announcements.
The text below was extracted from a contest announcement named "{display_name}".
It may be in English, Persian or a mix.

Return ONLY a JSON object with these keys (null or "" when not found):
- festivalName: official name of the contest.
- objectives: goals of the contest. Prefer statements from the text; search the web only if missing or ambiguous.
- topicsString: all themes/categories/sections as one comma-separated string. Prefer statements from the text.
- maxPhotos: maximum photos per participant, a number when numeric, otherwise a string ("Unlimited").
- submissionDeadlinePersian: deadline as Jalali YYYY/MM/DD when the source states a Jalali date.
- submissionDeadlineGregorian: deadline as YYYY-MM-DD when found or clearly inferable.
- imageSize: required dimensions, resolution or file size.
- submissionMethod: a full URL if submission happens on a website, the bare address if by e-mail, otherwise a short description.

If key facts (especially deadlines) are missing or ambiguous and an official contest website is
known, use web search to verify them and prefer the website's deadline.
If festivalName, objectives, topicsString or imageSize are taken from a non-Persian web source,
translate their final values to Persian. Deadlines and submissionMethod keep their original form.

Text:
---
{text}
---
""".strip()

FESTIVAL_ANALYSIS_PROMPT = """
You are an expert analyst of photography contests. For the contest "{festival_name}":
- Topics: {topics}
- Objectives: {objectives}
{notes_section}
Use web search to study previous editions (winners, recurring subjects, successful styles) and the
jury (their work and stated judging criteria). Then write, in fluent Persian, a structured analysis
with these sections, each titled as **Section title:**
**Contest and history analysis:**
**Jury analysis (if possible):**
**Recommended genres and styles:**
**Key photographic ideas and concepts:**
**Notable technical considerations:**
**Common mistakes to avoid:**
**Summary and final recommendations:**
Use "* " bullets for lists. State explicitly when information could not be found.
Return only the analysis text.
""".strip()

ANALYSIS_NOTES_SECTION = """
Additional notes supplied by the user:
--- START OF USER NOTES ---
{notes}
--- END OF USER NOTES ---
""".strip()

ITEM_ANALYSIS_PROMPT = """
You are a discerning photo contest judge. Evaluate the attached image strictly against the
"Smart Festival Analysis" below{focus_clause}.

Festival: {festival_name}
Topics: {topics}
Objectives: {objectives}

--- START OF SMART FESTIVAL ANALYSIS ---
{smart_analysis}
--- END OF SMART FESTIVAL ANALYSIS ---
{focus_section}{note_section}
Thematic relevance dominates the score: a technically flawless image that does not fit the
festival's theme{focus_suffix} MUST score low (0-3). Critique relevance first, then concept,
emotion and narrative, then technique in service of the theme.

Return a single JSON object, all text in Persian:
- imageCritique: string
- suitabilityScoreOutOf10: number from 0 to 10
- scoreReasoning: string
- editingCritiqueAndSuggestions: detailed editing critique and concrete suggestions ONLY if the
  score is 7 or higher, otherwise null
""".strip()

ITEM_FOCUS_SECTION = """
Selected topic focus: {topic_focus}
Weigh the image's relevance to this topic more heavily than generic criteria. Poor alignment
with the selected topic must lower the score even for an otherwise good image.
"""

ITEM_GENERAL_SECTION = """
No specific topic was selected; evaluate against the overall festival criteria.
"""

ITEM_NOTE_SECTION = """
The photographer's description of this image: "{note}"
Treat it as context about intent; it does not override an objective assessment of relevance.
"""
