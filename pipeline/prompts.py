"""
Prompt templates for LLM-backed pipeline stages.

All prompt constants are centralized here for easier maintenance and
iteration. Templates are filled with str.format; every JSON template
ends with a {response_schema} block generated from the Pydantic model.
"""

# =============================================================================
# LANGUAGE INSTRUCTIONS
# =============================================================================

LANGUAGE_INSTRUCTIONS = {
    "zh-HK": """**OUTPUT LANGUAGE:** Traditional Chinese (Hong Kong).
- Use Hong Kong specific vocabulary (e.g., '質素' instead of '品質', '互聯網' instead of '網際網路', '智能手機').
- Style should be natural for Hong Kong readers (Standard Written Chinese with HK nuances).
- **STRICTLY FORBIDDEN:** Spoken Cantonese particles (e.g., 嘅, 係, 咗, 佢, 咁) unless explicitly requested.""",
    "zh-MY": """**OUTPUT LANGUAGE:** Simplified Chinese (Malaysia).
- Use Simplified characters.
- Use Malaysia-specific Chinese vocabulary where applicable (e.g., '巴刹' for market, '巴士' for bus).
- Tone: relatable to Malaysian Chinese readers.""",
    "zh-TW": """**OUTPUT LANGUAGE:** Traditional Chinese (Taiwan).
- Use Taiwan specific vocabulary (e.g., '品質', '網際網路', '計程車').
- Style should be natural for Taiwanese readers.
- **STRICTLY FORBIDDEN:** Cantonese particles (e.g., 嘅, 係, 咗, 佢, 咁) and Hong Kong specific vocabulary (e.g., '質素').""",
}


def get_language_instruction(audience: str) -> str:
    """Output-language block for an audience code; unknown codes fall back to zh-TW."""
    return LANGUAGE_INSTRUCTIONS.get(audience, LANGUAGE_INSTRUCTIONS["zh-TW"])


# =============================================================================
# PRODUCT PROMPTS
# =============================================================================

PARSE_PRODUCT_BRIEF_PROMPT = """### ROLE
You are a marketing analyst turning a raw product/service description into a structured brief.

### TASK
Extract:
- brand_name: the company or brand
- product_name: the specific product or service
- usp: the single strongest unique selling point
- cta_link: the URL readers should visit (empty string if none is given)
- target_pain_points: the customer problems this product solves, as one sentence

Do not invent facts that are not in the description.

<product_description>
{raw_text}
</product_description>

### OUTPUT FORMAT
{response_schema}"""


MAP_PROBLEMS_TO_PRODUCT_PROMPT = """### ROLE
You are a conversion strategist connecting reader problems to product features.

### TASK
The article is titled "{title}". The product is "{product_name}" by "{brand_name}".
USP: {usp}
Known pain points: {pain_points}

Produce 3-5 mappings. Each mapping pairs a pain point a reader of this article
actually has with the product feature that resolves it, plus 2-5 short
relevance_keywords that would appear in the heading of a section discussing it.
Keywords must be written in the article's output language.

{language_instruction}

### OUTPUT FORMAT
{response_schema}"""


# =============================================================================
# REFERENCE ANALYSIS PROMPTS
# =============================================================================

ANALYZE_REFERENCE_STRUCTURE_PROMPT = """### ROLE
You are a senior content strategist reverse-engineering a reference article.

### TASK
Read the reference content and produce:
1. structure: the ordered list of H2 sections. For every section give
   title, narrative_plan (steps), core_question, difficulty (easy|medium|unclear),
   writing_mode (direct|multi_solutions), solution_angles, key_facts,
   usp_notes, subheadings (H3s), augment (facts to add) and suppress (topics to avoid).
2. general_plan: article-wide writing directives.
3. conversion_plan: how the article moves the reader toward action.
4. key_information_points: concrete facts, numbers and claims worth keeping.
5. brand_exclusive_points: claims that only apply to the reference's own brand.
6. competitor_brands / competitor_products: brand and product names mentioned.
7. replacement_rules: generic terms that must be rewritten for our brand.
8. intro_text: the opening paragraph before the first H2 (empty if none).
9. h1_title: the reference's main title.

{language_instruction}

<reference_content>
{reference_content}
</reference_content>

### OUTPUT FORMAT
{response_schema}"""


ANALYZE_AUTHORITY_TERMS_PROMPT = """### ROLE
You are a subject-matter editor selecting authority vocabulary.

### TASK
Article title: "{title}"

From the candidate authority terms below, keep only the ones relevant to this
article (relevant_terms), and propose natural term combinations a domain expert
would use (combinations). Use the reference excerpt for context.

{language_instruction}

<authority_terms>
{authority_terms}
</authority_terms>

<reference_excerpt>
{reference_excerpt}
</reference_excerpt>

### OUTPUT FORMAT
{response_schema}"""


# =============================================================================
# VISUAL PROMPTS
# =============================================================================

ANALYZE_IMAGE_PROMPT = """Describe this image in one dense paragraph for a designer who cannot see it.
Cover subject, composition, lighting, color palette, mood and photographic style.
Context from the page around it: {context}"""


ANALYZE_VISUAL_STYLE_PROMPT = """### ROLE
You are an art director defining a consistent visual identity.

### TASK
The images below come from a {website_type} website. Summarize their shared
visual style in 2-3 sentences (lighting, palette, composition, subject treatment)
so new images can match it.

<image_descriptions>
{descriptions}
</image_descriptions>"""


# =============================================================================
# REGIONAL & KEYWORD PROMPTS
# =============================================================================

REGIONAL_TERMS_PROMPT = """### ROLE
You are a localization editor for {audience} readers.

### TASK
Find words or phrases in the content that are unnatural or incorrect for the
target region (wrong regional vocabulary, foreign brand names with local
equivalents, units, spelling variants). For each one give the original text,
the regional replacement and a short reason. Return an empty list if the
content is already natural for the region.

{language_instruction}

<content>
{content}
</content>

### OUTPUT FORMAT
{response_schema}"""


KEYWORD_PLAN_PROMPT = """### ROLE
You are an SEO editor planning how each keyword should be used.

### TASK
For each keyword below, write an action plan: 1-3 short directives on where and
how to use it naturally, and up to 2 example snippets taken from or modeled on
the reference text. Keep the keywords exactly as given, in the same order.

{language_instruction}

<keywords>
{keywords}
</keywords>

<reference_excerpt>
{reference_excerpt}
</reference_excerpt>

### OUTPUT FORMAT
{response_schema}"""


# =============================================================================
# WRITING PROMPTS
# =============================================================================

CONTEXT_FILTER_PROMPT = """### ROLE
You are a research assistant preparing notes for one section of an article.

### TASK
Section title: "{section_title}"

1. filtered_points: from the candidate facts, keep ONLY those relevant to this section.
2. filtered_auth_terms: from the candidate terms, keep ONLY those relevant to this section.
3. knowledge_insights: extract 3-5 concrete directives for this section from the
   knowledge base (empty list if there is no knowledge base).

Copy kept facts and terms verbatim.

{language_instruction}

<candidate_facts>
{facts}
</candidate_facts>

<candidate_terms>
{terms}
</candidate_terms>

<knowledge_base>
{knowledge_base}
</knowledge_base>

### OUTPUT FORMAT
{response_schema}"""


SECTION_CONTENT_PROMPT = """### ROLE
You are an expert long-form writer producing ONE section of the article "{article_title}".

### SECTION
Title: "{section_title}"
Core question: {core_question}
Difficulty: {difficulty}
Writing mode: {writing_mode}
Solution angles: {solution_angles}
Planned H3 subheadings: {subheadings}

### PLAN
Article-wide plan:
{general_plan}

Section plan:
{specific_plan}

### MATERIAL
Facts to use (report the ones you use in used_points, verbatim):
{points}

Knowledge base directives:
{kb_insights}

Authority terms:
{auth_terms}

Keyword plans:
{keyword_plans}

Regional replacements (always apply):
{regional_replacements}

{injection_plan}

### CONSTRAINTS
- Do NOT write the section title; start directly with the body.
- Use H3 (###) for any subheadings. Never use H1 or H2.
- Do NOT cover these topics, which belong to other sections or are excluded:
{avoid_content}

{language_instruction}

### OUTPUT FORMAT
Return content (Markdown), used_points (facts you used, verbatim) and
injected_count (how many times you explicitly mentioned the product or brand name).
{response_schema}"""


# =============================================================================
# IMAGE PLANNING PROMPT
# =============================================================================

PLAN_IMAGES_PROMPT = """### ROLE
You are a visual editor planning images for a finished article.

### TASK
Plan exactly {max_images} images. For each give:
- category: one of BRANDED_LIFESTYLE, PRODUCT_DETAIL, INFOGRAPHIC, PRODUCT_INFOGRAPHIC, ECOMMERCE_WHITE_BG
- generated_prompt: a detailed English image-generation prompt matching the visual style
- insert_after: a short verbatim text snippet from the article the image should follow

Visual style: {visual_style}
Audience: {audience}

<available_reference_images>
{image_context}
</available_reference_images>

<article>
{content}
</article>

### OUTPUT FORMAT
{response_schema}"""
