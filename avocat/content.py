"""
Text generation for the purchased document packages.

`ContentGenerator` turns (document name, legal area, jurisdiction) into prose for
one of three variants. The provider call goes through `CompletionClient`, which
owns the retry policy and the optional offline fallback.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TEMPLATE = "template"
SAMPLE = "sample"
STUDY_MATERIAL = "study_material"

VARIANTS = (TEMPLATE, SAMPLE, STUDY_MATERIAL)

VARIANT_LABELS = {
    TEMPLATE: "Plantilla",
    SAMPLE: "Ejemplo",
    STUDY_MATERIAL: "Material de Estudio",
}

DEFAULT_SYSTEM_PROMPT = (
    "Eres un abogado experto especializado en derecho español. "
    "Genera documentos legales profesionales, precisos y actualizados. "
    "Utiliza un lenguaje formal y técnico apropiado para el ámbito jurídico."
)


class CompletionError(Exception):
    """The provider did not produce usable text after every attempt."""


@dataclass
class PromptSpec:
    system: str
    user: str
    temperature: float
    max_tokens: int


PROMPTS = {
    TEMPLATE: PromptSpec(
        system=(
            "Eres un experto en derecho español especializado en crear plantillas legales profesionales. "
            "Genera plantillas vacías con marcadores de posición [PLACEHOLDER] que los estudiantes puedan completar. "
            "Las plantillas deben ser documentos oficiales completos con estructura profesional, capítulos, "
            "párrafos y referencias legales."
        ),
        user="""Genera una plantilla completa y profesional para "{name}" en el área de "{area}" para la jurisdicción de "{jurisdiction}".

REQUISITOS OBLIGATORIOS:
1. MÍNIMO 4 PÁGINAS de contenido completo
2. Estructura oficial con CAPÍTULOS numerados (I., II., III., etc.) y párrafos
3. Incluir encabezado con datos del solicitante, fundamentos jurídicos, hechos y antecedentes, justificaciones legales, peticiones numeradas y referencias normativas
4. Usar marcadores de posición claros: [NOMBRE], [DNI], [DIRECCIÓN], [FECHA], [CIUDAD], [ART. X], [LEY X/YYYY]
5. Incluir instrucciones breves entre paréntesis cuando sea necesario

FORMATO: Documento legal oficial estructurado con capítulos, párrafos y placeholders.""",
        temperature=0.2,
        max_tokens=6000,
    ),
    SAMPLE: PromptSpec(
        system=(
            "Eres un experto en derecho español especializado en crear ejemplos prácticos de documentos legales. "
            "Genera documentos completos con datos de ejemplo realistas pero ficticios, incluyendo contenido legal "
            "completo, justificaciones y referencias normativas."
        ),
        user="""Genera un ejemplo completo y práctico de "{name}" en el área de "{area}" para la jurisdicción de "{jurisdiction}".

REQUISITOS OBLIGATORIOS:
1. MÍNIMO 4 PÁGINAS de contenido completo y detallado
2. Estructura oficial con CAPÍTULOS numerados (I., II., III., etc.) y párrafos estructurados
3. Fundamentos jurídicos detallados con referencias a leyes reales, hechos narrados de forma coherente y peticiones numeradas
4. Usar nombres ficticios realistas ("Juan Pérez García", "Empresa ABC S.L.") y datos coherentes

FORMATO: Documento legal oficial completo con capítulos, párrafos, referencias legales y justificaciones.""",
        temperature=0.3,
        max_tokens=6000,
    ),
    STUDY_MATERIAL: PromptSpec(
        system=(
            "Eres un experto en derecho español especializado en crear materiales de estudio para estudiantes de derecho. "
            "Genera documentos educativos completos, bien estructurados y profesionales que sirvan como guías de estudio "
            "exhaustivas."
        ),
        user="""Genera un material de estudio completo y exhaustivo sobre "{name}" en el área de "{area}" para la jurisdicción de "{jurisdiction}".

ESTRUCTURA OBLIGATORIA:
CAPÍTULO I. INTRODUCCIÓN Y CONTEXTO LEGAL
CAPÍTULO II. MARCO NORMATIVO APLICABLE
CAPÍTULO III. ESTRUCTURA Y ELEMENTOS DEL DOCUMENTO
CAPÍTULO IV. PROCEDIMIENTO Y ADMINISTRACIONES COMPETENTES (con una tabla de órganos competentes, profesionales, plazos e instancias)
CAPÍTULO V. RECURSOS Y REFERENCIAS ADICIONALES
CAPÍTULO VI. EJEMPLO PRÁCTICO Y CASOS
CAPÍTULO VII. PUNTOS CLAVE Y CHECKLIST

FORMATO: Documento estructurado con capítulos, párrafos numerados, tablas legibles y referencias. Mínimo 4 páginas.""",
        temperature=0.3,
        max_tokens=8000,
    ),
}


@dataclass
class CompletionTrace:
    """What happened during one completion call, handed to the `on_trace` hook."""
    model: str
    system_prompt: str
    user_prompt: str
    attempts: int = 0
    elapsed: float = 0.0
    usage: dict = field(default_factory=dict)
    error: Optional[str] = None
    fallback_used: bool = False


class OpenAIProvider:
    """Chat completions against the OpenAI API."""

    def __init__(self, client, model, timeout=120):
        self.client = client
        self.model = model
        self.timeout = timeout

    def complete(self, system_prompt, user_prompt, temperature=0.3, max_tokens=4000):
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.timeout,
        )
        usage = {}
        if response.usage is not None:
            usage = {
                "promptTokens": response.usage.prompt_tokens,
                "completionTokens": response.usage.completion_tokens,
                "totalTokens": response.usage.total_tokens,
            }
        return response.choices[0].message.content or "", usage


class StubProvider:
    """Deterministic offline text, used as a fallback or in development."""

    model = "stub"

    def complete(self, system_prompt, user_prompt, temperature=0.3, max_tokens=4000):
        subject = user_prompt.split('"')[1] if user_prompt.count('"') >= 2 else "Documento"
        text = "\n".join([
            subject.upper(),
            "",
            "I. ENCABEZADO",
            "D./Dña. [NOMBRE], con DNI [DNI] y domicilio en [DIRECCIÓN].",
            "",
            "II. HECHOS",
            "1. Primero. Descripción de los hechos relevantes.",
            "2. Segundo. Antecedentes del asunto.",
            "",
            "III. FUNDAMENTOS JURÍDICOS",
            "- Normativa aplicable: [LEY X/YYYY], [ART. X].",
            "",
            "IV. PETICIONES",
            "1. Que se tenga por presentado este escrito.",
            "",
            "Firma: ______________________",
            "Fecha: _______________",
        ])
        return text, {}


class RetryPolicy:
    """Exponential backoff between attempts."""

    def __init__(self, max_attempts=3, initial_delay=1.0, backoff=2.0, sleep=time.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.backoff = backoff
        self.sleep = sleep

    def delay_for(self, attempt):
        return self.initial_delay * (self.backoff ** (attempt - 1))


class CompletionClient:
    """
    Wraps a provider with retries and an optional fallback provider.

    `on_trace`, when given, is called once per `complete` call with a
    `CompletionTrace`, whatever the outcome.
    """

    def __init__(self, provider, retry_policy: Optional[RetryPolicy] = None, fallback=None,
                 on_trace: Optional[Callable[[CompletionTrace], None]] = None):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback = fallback
        self.on_trace = on_trace

    @property
    def model(self):
        return getattr(self.provider, "model", "unknown")

    def complete(self, user_prompt, system_prompt=DEFAULT_SYSTEM_PROMPT, temperature=0.3, max_tokens=4000):
        trace = CompletionTrace(model=self.model, system_prompt=system_prompt, user_prompt=user_prompt)
        start_time = time.monotonic()
        policy = self.retry_policy
        last_error = None
        try:
            for attempt in range(1, policy.max_attempts + 1):
                trace.attempts = attempt
                try:
                    content, usage = self.provider.complete(
                        system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens
                    )
                    if not content.strip():
                        raise CompletionError("Empty completion")
                    trace.usage = usage
                    return content
                except Exception as e:
                    last_error = e
                    logger.error(f"Completion attempt {attempt}/{policy.max_attempts} failed: {e}")
                    if attempt < policy.max_attempts:
                        policy.sleep(policy.delay_for(attempt))

            trace.error = str(last_error)
            if self.fallback is None:
                raise CompletionError(f"Completion failed after {policy.max_attempts} attempts: {last_error}") from last_error

            logger.warning("Completion retries exhausted, using fallback provider.")
            trace.fallback_used = True
            content, usage = self.fallback.complete(
                system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens
            )
            trace.usage = usage
            return content
        finally:
            trace.elapsed = time.monotonic() - start_time
            if self.on_trace is not None:
                self.on_trace(trace)


class ContentGenerator:
    """Generates the prose of one document variant."""

    def __init__(self, client: CompletionClient):
        self.client = client

    def generate(self, variant, document_name, area, jurisdiction):
        if variant not in PROMPTS:
            raise ValueError(f"Unknown document variant: {variant}")
        spec = PROMPTS[variant]
        prompt = spec.user.format(name=document_name, area=area, jurisdiction=jurisdiction)
        logger.info(f"Generating {variant} for '{document_name}' ({area}, {jurisdiction})")
        return self.client.complete(
            prompt,
            system_prompt=spec.system,
            temperature=spec.temperature,
            max_tokens=spec.max_tokens,
        )


class UnavailableProvider:
    """Stands in when no API key is configured; every call fails."""

    model = "unavailable"

    def complete(self, system_prompt, user_prompt, temperature=0.3, max_tokens=4000):
        raise CompletionError("OpenAI API key not set")


def log_trace(trace):
    logger.debug(
        f"Completion model={trace.model} attempts={trace.attempts} elapsed={trace.elapsed:.2f}s "
        f"fallback={trace.fallback_used} usage={trace.usage} error={trace.error}"
    )
