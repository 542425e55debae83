from __future__ import annotations

PAGE_CHAR_LIMIT = 15_000
CONTENT_CHAR_LIMIT = 100_000


def combine_pages(pages: list[tuple[str, str]]) -> str:
    blocks = [f"=== PAGE: {url} ===\n{content[:PAGE_CHAR_LIMIT]}" for url, content in pages if content]
    return "\n\n".join(blocks)[:CONTENT_CHAR_LIMIT]


def url_selection_prompt(urls: list[str], limit: int) -> str:
    listing = "\n".join(f"{i}. {url}" for i, url in enumerate(urls, start=1))
    return (
        "We are collecting sales and marketing context from a company's website.\n\n"
        f"From the URLs below, choose the {limit} pages most likely to describe:\n"
        "- what the company does and its value proposition\n"
        "- who it sells to and the problems it solves\n"
        "- products, features and pricing\n"
        "- customers, case studies and testimonials\n"
        "- competitors and differentiation\n\n"
        "Favour the homepage, about, pricing, product, solutions, customers and case-study pages. "
        "Ignore blog posts, news, careers and legal pages.\n\n"
        f"URLs:\n{listing}\n\n"
        f"Answer with a JSON array of at most {limit} URLs, most useful first, and nothing else."
    )


def sales_profile_prompt(content: str) -> str:
    return (
        "Read the website content below and extract the company's sales and marketing profile.\n\n"
        f"{content}\n\n"
        "---\n\n"
        "Respond with one JSON object with these keys:\n"
        "{\n"
        '  "companyName": "official company or product name",\n'
        '  "valueProposition": "core value proposition in one or two sentences",\n'
        '  "customerPainPoints": ["..."],\n'
        '  "callToAction": "the primary call to action on the site",\n'
        '  "socialProof": {"caseStudies": ["..."], "testimonials": ["..."], "results": ["..."]},\n'
        '  "companyOverview": "two or three sentence description",\n'
        '  "additionalContext": "anything else useful for sales outreach",\n'
        '  "competitors": ["..."],\n'
        '  "productDifferentiators": ["..."],\n'
        '  "targetAudience": "who the product is for",\n'
        '  "keyFeatures": ["..."]\n'
        "}\n\n"
        "Quote what the pages actually say. Use an empty array or null when something is not covered. "
        "Return only the JSON object."
    )


def icp_suggestion_prompt(content: str) -> str:
    return (
        "Read the website content below and describe the ideal customer profile this company should "
        "target with B2B cold outbound. The values are used verbatim as people-search filters.\n\n"
        f"{content}\n\n"
        "---\n\n"
        "Respond with one JSON object with exactly these keys:\n"
        "{\n"
        '  "person_titles": ["3 to 8 specific job titles of buyers with budget authority"],\n'
        '  "q_organization_keyword_tags": ["2 to 6 industry or business-model keywords"],\n'
        '  "organization_locations": ["1 to 4 countries or regions"]\n'
        "}\n\n"
        'Prefer specific titles ("VP of Sales", "Head of Marketing") over generic ones ("Manager"). '
        'Avoid vague tags such as "technology". Use country or region names, not cities, and '
        'default to ["United States"] when the site gives no geography. Return only the JSON object.'
    )
