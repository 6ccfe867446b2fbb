"""Signature database.

Every table here is an immutable tuple built once at import. Technology
signatures report into one of the scan record categories (``cdn`` doubles as
the hosting fallback); AI signatures form a parallel catalogue. The remaining
tables drive the render and probe phases: AI API domains, gateway domains and
headers, response payload fingerprints, speed bands for model inference,
runtime window hints and third-party service groupings.
"""

from collections import namedtuple

from stackprobe.models import Category, EvidenceRule, RuleType, Signature, Thresholds


def html(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.HTML, pattern, weight)


def script(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.SCRIPT_SRC, pattern, weight)


def header(key: str, pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.HEADER, pattern, weight, key=key)


def dns(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.DNS, pattern, weight)


def cookie(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.COOKIE, pattern, weight)


def meta(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.META, pattern, weight)


def network(pattern: str, weight: float) -> EvidenceRule:
    return EvidenceRule(RuleType.NETWORK, pattern, weight)


DEFAULT_THRESHOLDS = Thresholds(high=0.8, medium=0.5)
LENIENT_THRESHOLDS = Thresholds(high=0.8, medium=0.4)


def _sig(id, name, category, *rules, thresholds=DEFAULT_THRESHOLDS) -> Signature:
    return Signature(id=id, name=name, category=category, rules=tuple(rules), thresholds=thresholds)


# =============================================================================
# Technology signatures
# =============================================================================

SIGNATURE_DB = (
    # Frameworks
    _sig("nextjs", "Next.js", Category.FRAMEWORK,
         html(r"__NEXT_DATA__", 0.7),
         script(r"/_next/static/", 0.6),
         header("x-powered-by", r"Next\.js", 0.6),
         script(r"/_next/", 0.4),
         meta(r"next\.js", 0.4)),
    _sig("nuxt", "Nuxt", Category.FRAMEWORK,
         html(r"__NUXT__", 0.7),
         html(r"data-n-head", 0.5),
         script(r"/_nuxt/", 0.6)),
    _sig("react", "React", Category.FRAMEWORK,
         html(r"data-reactroot", 0.6),
         html(r"__REACT_DEVTOOLS_GLOBAL_HOOK__", 0.5),
         script(r"react\.production\.min\.js", 0.7),
         script(r"react-dom", 0.5),
         html(r"_reactListening", 0.4)),
    _sig("vue", "Vue.js", Category.FRAMEWORK,
         html(r"data-v-", 0.6),
         script(r"vue\.js", 0.7),
         script(r"vue\.min\.js", 0.7),
         html(r"__VUE__", 0.5)),
    _sig("angular", "Angular", Category.FRAMEWORK,
         html(r"ng-version", 0.7),
         script(r"angular\.js", 0.6),
         html(r"ng-app", 0.5),
         script(r"main\.[a-f0-9]+\.js", 0.3)),
    _sig("svelte", "Svelte", Category.FRAMEWORK,
         html(r"svelte", 0.5),
         script(r"svelte", 0.6),
         html(r"__svelte", 0.7)),
    _sig("remix", "Remix", Category.FRAMEWORK,
         html(r"__remixContext", 0.8),
         script(r"/build/", 0.3),
         html(r"remix", 0.4)),
    _sig("astro", "Astro", Category.FRAMEWORK,
         html(r"astro-island", 0.8),
         html(r"astro-slot", 0.7),
         script(r"astro", 0.5),
         meta(r"astro", 0.5)),
    _sig("gatsby", "Gatsby", Category.FRAMEWORK,
         html(r"___gatsby", 0.8),
         meta(r"gatsby", 0.7),
         script(r"/page-data/", 0.4)),
    _sig("shopify", "Shopify", Category.CMS,
         script(r"cdn\.shopify\.com", 0.9),
         html(r"Shopify\.theme", 0.7),
         header("x-shopid", r".*", 0.8)),
    _sig("wordpress", "WordPress", Category.CMS,
         html(r"/wp-content/", 0.7),
         meta(r"WordPress", 0.8),
         script(r"/wp-includes/", 0.7)),

    # Hosting
    _sig("vercel", "Vercel", Category.HOSTING,
         header("x-vercel-id", r".*", 0.9),
         header("server", r"Vercel", 0.8),
         dns(r"vercel-dns\.com", 0.7),
         dns(r"vercel\.app", 0.7),
         script(r"/_vercel/insights/", 0.6),
         header("x-vercel-cache", r".*", 0.5)),
    _sig("netlify", "Netlify", Category.HOSTING,
         header("server", r"Netlify", 0.9),
         header("x-nf-request-id", r".*", 0.8),
         dns(r"netlify\.app", 0.7),
         header("x-nf-", r".*", 0.5)),
    _sig("cloudflare", "Cloudflare", Category.CDN,
         header("cf-ray", r".*", 0.9),
         header("server", r"cloudflare", 0.8),
         header("cf-cache-status", r".*", 0.6)),
    _sig("aws", "AWS", Category.HOSTING,
         header("x-amz-", r".*", 0.7),
         header("server", r"AmazonS3", 0.8),
         dns(r"amazonaws\.com", 0.7),
         dns(r"cloudfront\.net", 0.6)),
    _sig("heroku", "Heroku", Category.HOSTING,
         header("via", r"heroku", 0.8),
         dns(r"herokuapp\.com", 0.9),
         header("server", r"heroku", 0.7)),
    _sig("railway", "Railway", Category.HOSTING,
         dns(r"railway\.app", 0.9),
         header("server", r"railway", 0.7)),
    _sig("render", "Render", Category.HOSTING,
         dns(r"onrender\.com", 0.9),
         header("server", r"render", 0.7)),
    _sig("replit", "Replit", Category.HOSTING,
         dns(r"replit\.dev", 0.9),
         dns(r"repl\.co", 0.9),
         header("x-replit-", r".*", 0.7)),
    _sig("fly", "Fly.io", Category.HOSTING,
         header("fly-request-id", r".*", 0.9),
         dns(r"fly\.dev", 0.9),
         header("server", r"Fly", 0.7)),
    _sig("fastly", "Fastly", Category.CDN,
         header("x-served-by", r"cache-", 0.7),
         header("x-fastly-request-id", r".*", 0.9)),

    # Payments
    _sig("stripe", "Stripe", Category.PAYMENTS,
         script(r"js\.stripe\.com", 0.9),
         html(r"checkout\.stripe\.com", 0.8),
         script(r"m\.stripe\.network", 0.6),
         html(r"stripe-js", 0.6)),
    _sig("paypal", "PayPal", Category.PAYMENTS,
         script(r"paypal\.com/sdk", 0.9),
         html(r"paypal", 0.4),
         script(r"paypalobjects\.com", 0.7)),
    _sig("paddle", "Paddle", Category.PAYMENTS,
         script(r"paddle\.com", 0.9),
         html(r"paddle", 0.4)),
    _sig("lemon_squeezy", "Lemon Squeezy", Category.PAYMENTS,
         script(r"lemonsqueezy\.com", 0.9),
         html(r"lemonsqueezy", 0.5)),

    # Auth
    _sig("clerk", "Clerk", Category.AUTH,
         script(r"clerk\.com", 0.9),
         html(r"__clerk", 0.7),
         script(r"@clerk/clerk-js", 0.8),
         cookie(r"__session|__client_uat", 0.6)),
    _sig("auth0", "Auth0", Category.AUTH,
         script(r"cdn\.auth0\.com", 0.9),
         html(r"auth0", 0.4),
         script(r"auth0-js", 0.7)),
    _sig("supabase_auth", "Supabase Auth", Category.AUTH,
         script(r"supabase", 0.6),
         html(r"supabase\.co/auth", 0.8),
         script(r"@supabase/supabase-js", 0.7),
         cookie(r"sb-[a-z0-9]+-auth-token", 0.8)),
    _sig("firebase_auth", "Firebase Auth", Category.AUTH,
         script(r"firebase.*auth", 0.8),
         html(r"firebaseauth", 0.6),
         script(r"firebaseapp\.com", 0.5)),
    _sig("okta", "Okta", Category.AUTH,
         script(r"okta\.com", 0.9),
         html(r"okta", 0.4)),
    _sig("nextauth", "NextAuth.js", Category.AUTH,
         html(r"next-auth", 0.7),
         cookie(r"next-auth\.session-token", 0.8),
         cookie(r"next-auth\.csrf-token", 0.6)),

    # Analytics
    _sig("google_analytics", "Google Analytics (GA4)", Category.ANALYTICS,
         script(r"googletagmanager\.com/gtag", 0.9),
         html(r"gtag\('config'", 0.7),
         script(r"google-analytics\.com", 0.8),
         html(r"G-[A-Z0-9]+", 0.5)),
    _sig("posthog", "PostHog", Category.ANALYTICS,
         script(r"posthog\.com", 0.9),
         html(r"posthog", 0.5),
         script(r"array\.js", 0.6)),
    _sig("mixpanel", "Mixpanel", Category.ANALYTICS,
         script(r"mixpanel\.com", 0.9),
         html(r"mixpanel", 0.5)),
    _sig("segment", "Segment", Category.ANALYTICS,
         script(r"segment\.com", 0.9),
         script(r"cdn\.segment\.io", 0.8),
         html(r"analytics\.js", 0.4)),
    _sig("amplitude", "Amplitude", Category.ANALYTICS,
         script(r"amplitude\.com", 0.9),
         html(r"amplitude", 0.4)),
    _sig("heap", "Heap", Category.ANALYTICS,
         script(r"heap\.io", 0.9),
         script(r"heapanalytics\.com", 0.9)),
    _sig("plausible", "Plausible", Category.ANALYTICS,
         script(r"plausible\.io", 0.9)),
    _sig("hotjar", "Hotjar", Category.ANALYTICS,
         script(r"hotjar\.com", 0.9),
         html(r"hjSiteSettings", 0.7)),

    # Support
    _sig("intercom", "Intercom", Category.SUPPORT,
         script(r"widget\.intercom\.io", 0.9),
         html(r"Intercom", 0.5),
         script(r"intercom", 0.6)),
    _sig("zendesk", "Zendesk", Category.SUPPORT,
         script(r"zdassets\.com", 0.9),
         html(r"zendesk", 0.5)),
    _sig("crisp", "Crisp", Category.SUPPORT,
         script(r"crisp\.chat", 0.9),
         html(r"crisp", 0.4)),
    _sig("freshdesk", "Freshdesk", Category.SUPPORT,
         script(r"freshdesk\.com", 0.9),
         html(r"freshdesk", 0.4)),
    _sig("drift", "Drift", Category.SUPPORT,
         script(r"drift\.com", 0.9),
         html(r"drift", 0.4)),
    _sig("hubspot", "HubSpot", Category.SUPPORT,
         script(r"hubspot\.com", 0.9),
         script(r"hs-scripts\.com", 0.8),
         html(r"hubspot", 0.4)),
)


# =============================================================================
# AI provider signatures
# =============================================================================

AI_SIGNATURES = (
    _sig("openai", "OpenAI", Category.AI,
         script(r"openai", 0.7),
         html(r"api\.openai\.com", 0.8),
         html(r"openai-api", 0.6),
         html(r"gpt-4", 0.5),
         html(r"gpt-3\.5", 0.5),
         html(r"chatgpt", 0.4),
         network(r"api\.openai\.com", 0.9),
         thresholds=LENIENT_THRESHOLDS),
    _sig("azure_openai", "Azure OpenAI", Category.AI,
         html(r"openai\.azure\.com", 0.9),
         html(r"azure.*openai", 0.6),
         script(r"azure.*openai", 0.7),
         network(r"openai\.azure\.com", 0.9)),
    _sig("anthropic", "Anthropic", Category.AI,
         script(r"anthropic", 0.7),
         html(r"api\.anthropic\.com", 0.8),
         html(r"claude-3", 0.6),
         html(r"claude-2", 0.5),
         html(r"anthropic", 0.4),
         network(r"api\.anthropic\.com", 0.9),
         thresholds=LENIENT_THRESHOLDS),
    _sig("google_gemini", "Google Gemini", Category.AI,
         script(r"generative-ai", 0.8),
         html(r"generativelanguage\.googleapis\.com", 0.9),
         html(r"gemini-pro", 0.7),
         html(r"gemini-1\.5", 0.7),
         script(r"@google/generative-ai", 0.8),
         network(r"generativelanguage\.googleapis\.com", 0.9)),
    _sig("cohere", "Cohere", Category.AI,
         script(r"cohere", 0.7),
         html(r"api\.cohere\.ai", 0.8),
         html(r"cohere\.ai", 0.5)),
    _sig("replicate", "Replicate", Category.AI,
         html(r"api\.replicate\.com", 0.8),
         html(r"replicate\.com", 0.5),
         script(r"replicate", 0.6)),
    _sig("huggingface", "Hugging Face", Category.AI,
         html(r"huggingface\.co", 0.7),
         script(r"huggingface", 0.7),
         html(r"api-inference\.huggingface", 0.8)),
    _sig("mistral", "Mistral AI", Category.AI,
         html(r"api\.mistral\.ai", 0.8),
         html(r"mistral-", 0.6),
         script(r"mistral", 0.6)),
    _sig("perplexity", "Perplexity AI", Category.AI,
         html(r"api\.perplexity\.ai", 0.8),
         html(r"perplexity", 0.4),
         script(r"perplexity", 0.6)),
    _sig("together_ai", "Together AI", Category.AI,
         html(r"api\.together\.xyz", 0.8),
         html(r"together\.ai", 0.5),
         script(r"together", 0.5)),
    _sig("groq", "Groq", Category.AI,
         html(r"api\.groq\.com", 0.8),
         html(r"groq\.com", 0.5),
         script(r"groq", 0.6)),
    _sig("fireworks", "Fireworks AI", Category.AI,
         html(r"api\.fireworks\.ai", 0.8),
         html(r"fireworks\.ai", 0.5)),
    _sig("vercel_ai_sdk", "Vercel AI SDK", Category.AI,
         script(r"ai\.vercel", 0.8),
         html(r"useChat", 0.6),
         html(r"useCompletion", 0.6),
         html(r"@vercel/ai", 0.7)),
    _sig("langchain", "LangChain", Category.AI,
         html(r"langchain", 0.6),
         script(r"langchain", 0.7)),
)


# =============================================================================
# Render / probe tables
# =============================================================================

# Exact API hostname -> provider
AI_PROVIDER_DOMAINS = (
    ("api.openai.com", "OpenAI"),
    ("openai.azure.com", "OpenAI (Azure)"),
    ("api.anthropic.com", "Anthropic"),
    ("generativelanguage.googleapis.com", "Google Gemini"),
    ("api.groq.com", "Groq"),
    ("api.cohere.ai", "Cohere"),
    ("api.mistral.ai", "Mistral"),
    ("api.replicate.com", "Replicate"),
    ("api.together.ai", "Together AI"),
    ("api.perplexity.ai", "Perplexity"),
    ("api.fireworks.ai", "Fireworks AI"),
)

AI_GATEWAY_DOMAINS = (
    ("gateway.ai.cloudflare.com", "Cloudflare AI Gateway"),
    ("api.portkey.ai", "Portkey"),
    ("gateway.helicone.ai", "Helicone"),
    ("oai.helicone.ai", "Helicone"),
    ("api.braintrust.dev", "Braintrust"),
)

GatewayHeader = namedtuple("GatewayHeader", ["name", "header_key"])

# Presence of the header on any captured response identifies the gateway
AI_GATEWAY_SIGNATURES = (
    GatewayHeader("Cloudflare AI Gateway", "cf-aig-cache-status"),
    GatewayHeader("Cloudflare AI Gateway", "cf-aig-log-id"),
    GatewayHeader("Portkey", "x-portkey-trace-id"),
    GatewayHeader("Portkey", "x-portkey-provider"),
    GatewayHeader("Helicone", "helicone-id"),
    GatewayHeader("Helicone", "helicone-cache"),
    GatewayHeader("Braintrust", "x-bt-cached"),
    GatewayHeader("Braintrust", "x-braintrust-span-id"),
)

# Provider-identifying response headers, checked in order
AI_PROVIDER_HEADERS = (
    ("anthropic-version", "Anthropic"),
    ("openai-organization", "OpenAI"),
    ("openai-processing-ms", "OpenAI"),
)

# Substring of x-vercel-ai-provider value -> provider
VERCEL_AI_PROVIDER_VALUES = (
    ("openai", "OpenAI"),
    ("anthropic", "Anthropic"),
    ("google", "Google Gemini"),
    ("mistral", "Mistral"),
    ("groq", "Groq"),
)

# API path fragment -> compatible-API label, used only when no provider is known
AI_COMPATIBLE_PATHS = (
    ("/v1/chat/completions", "OpenAI-compatible"),
    ("/v1/completions", "OpenAI-compatible"),
    ("/v1/messages", "Anthropic-compatible"),
)

PayloadSignature = namedtuple("PayloadSignature", ["provider", "pattern"])

# Wire-format fingerprints of streamed or JSON completion bodies
PAYLOAD_SIGNATURES = (
    PayloadSignature("Anthropic", r'"type"\s*:\s*"(message_start|content_block_delta|message_delta)"'),
    PayloadSignature("OpenAI", r'"object"\s*:\s*"chat\.completion(\.chunk)?"'),
    PayloadSignature("OpenAI", r'"object"\s*:\s*"response"|"type"\s*:\s*"response\.output_text\.delta"'),
    PayloadSignature("Google Gemini", r'"candidates"\s*:\s*\[\s*\{\s*"content"'),
    PayloadSignature("Cohere", r'"event_type"\s*:\s*"(text-generation|stream-start)"'),
    PayloadSignature("Vercel AI SDK", r'(^|\n)0:"'),
)

SpeedFingerprint = namedtuple("SpeedFingerprint", ["provider", "model", "min_tps", "max_tps"])

# Observed streaming speed bands; first band containing the TPS wins
SPEED_FINGERPRINTS = (
    SpeedFingerprint("Groq", "Llama 3 70B", 250, 1000),
    SpeedFingerprint("Google Gemini", "gemini-1.5-flash", 150, 250),
    SpeedFingerprint("Anthropic", "claude-3-haiku", 100, 150),
    SpeedFingerprint("OpenAI", "gpt-4o", 60, 100),
    SpeedFingerprint("Anthropic", "claude-3.5-sonnet", 40, 60),
    SpeedFingerprint("OpenAI", "gpt-4-turbo", 20, 40),
    SpeedFingerprint("OpenAI", "gpt-4", 5, 20),
)

REASONING_MODEL_LABEL = "Reasoning Model (o1 / DeepSeek R1)"
REASONING_MIN_TTFT_MS = 3000
REASONING_MIN_TPS = 50

WindowHint = namedtuple("WindowHint", ["name", "expression", "framework"])

# Runtime globals / DOM markers, in framework priority order
WINDOW_HINTS = (
    WindowHint("__NEXT_DATA__", "window.__NEXT_DATA__", "Next.js"),
    WindowHint("__NUXT__", "window.__NUXT__", "Nuxt"),
    WindowHint("Shopify", "window.Shopify", "Shopify"),
    WindowHint("__GATSBY", "window.___gatsby || window.__GATSBY", "Gatsby"),
    WindowHint("__remixContext", "window.__remixContext", "Remix"),
    WindowHint("__svelte", "window.__svelte", "Svelte"),
    WindowHint("Angular", "window.getAllAngularRootElements", "Angular"),
    WindowHint("Vue", "document.__vue_app__ || window.__VUE__", "Vue.js"),
    WindowHint("Streamlit", "document.querySelector('[data-testid=\"stAppViewContainer\"]')", "Streamlit"),
    WindowHint("Gradio", "document.querySelector('.gradio-container')", "Gradio"),
)

# Domain suffixes for grouping third-party services in evidence
THIRD_PARTY_SERVICES = (
    ("analytics", (
        "google-analytics.com", "googletagmanager.com", "posthog.com", "mixpanel.com",
        "segment.com", "segment.io", "amplitude.com", "heap.io", "heapanalytics.com",
        "plausible.io", "hotjar.com", "clarity.ms", "fullstory.com",
    )),
    ("fonts", (
        "fonts.googleapis.com", "fonts.gstatic.com", "use.typekit.net", "fonts.bunny.net",
        "use.fontawesome.com",
    )),
    ("cdn", (
        "cdnjs.cloudflare.com", "jsdelivr.net", "unpkg.com", "cloudfront.net",
        "akamaized.net", "fastly.net", "bootstrapcdn.com", "esm.sh",
    )),
    ("payments", (
        "stripe.com", "paypal.com", "paypalobjects.com", "paddle.com", "lemonsqueezy.com",
    )),
    ("auth", (
        "clerk.com", "clerk.accounts.dev", "auth0.com", "supabase.co", "firebaseapp.com",
        "okta.com",
    )),
    ("support", (
        "intercom.io", "intercomcdn.com", "zdassets.com", "zendesk.com", "crisp.chat",
        "freshdesk.com", "drift.com", "hs-scripts.com", "hubspot.com",
    )),
    ("ai", (
        "openai.com", "openai.azure.com", "anthropic.com", "generativelanguage.googleapis.com",
        "groq.com", "cohere.ai", "mistral.ai", "replicate.com", "together.ai", "together.xyz",
        "perplexity.ai", "fireworks.ai", "huggingface.co",
    )),
)


def all_signatures() -> tuple:
    """Technology catalogue followed by the AI catalogue."""
    return SIGNATURE_DB + AI_SIGNATURES
