"""
Static vocabulary used by the classifiers, the resident filter and the analysis engine.

All tables are immutable (tuples, frozensets, MappingProxyType) and shared
read-only across requests. Terms are stored already normalized (lower-case, no
diacritics); see core.text for the matching rules ("*" = stem, spaces = phrase).

Bump VOCABULARY_VERSION whenever a table changes: classification results are
only comparable between runs that used the same version.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from municipal_intel.core.text import normalize

VOCABULARY_VERSION = "2024.2"

# ---------------------------------------------------------------------------
# Survey answer scales
# ---------------------------------------------------------------------------

SATISFACTION_WEIGHTS: Mapping[str, int] = MappingProxyType({
    "Muito satisfeito": 5,
    "Satisfeito": 4,
    "Neutro": 3,
    "Insatisfeito": 2,
    "Muito insatisfeito": 1,
})

# Display order for breakdowns (best to worst)
SATISFACTION_LABELS: Tuple[str, ...] = tuple(SATISFACTION_WEIGHTS.keys())

DISSATISFIED_LABELS = frozenset({"Muito insatisfeito", "Insatisfeito"})
SATISFIED_LABELS = frozenset({"Muito satisfeito", "Satisfeito"})
NEUTRAL_LABEL = "Neutro"

MAX_SATISFACTION_SCORE = 5

# (label, min age, max age) inclusive
AGE_BRACKETS: Tuple[Tuple[str, int, int], ...] = (
    ("15-24", 15, 24),
    ("25-34", 25, 34),
    ("35-44", 35, 44),
    ("45-54", 45, 54),
    ("55-64", 55, 64),
    ("65+", 65, 150),
)

AGE_GROUP_NAMES: Mapping[str, str] = MappingProxyType({
    "15-24": "jovens (15-24 anos)",
    "25-34": "jovens adultos (25-34 anos)",
    "35-44": "adultos (35-44 anos)",
    "45-54": "adultos maduros (45-54 anos)",
    "55-64": "pré-aposentadoria (55-64 anos)",
    "65+": "idosos (65+ anos)",
})

# ---------------------------------------------------------------------------
# Query classification
# ---------------------------------------------------------------------------

STATISTICAL_TERMS: Tuple[str, ...] = (
    "total", "totais", "quantos", "quantas", "how many", "how much", "count",
    "contagem", "numero", "number of", "quantidade",
)

RECORD_NOUNS: Tuple[str, ...] = (
    "cadastro*", "registro*", "contato*", "contact*", "record*", "pessoa*",
    "people", "cidada*", "citizen*", "resident*", "morador*",
)

# Phrases that ask for a total on their own ("how many Silvas are there")
TOTAL_PATTERNS: Tuple[str, ...] = (
    "total de", "total dos", "total das", "total of", "how many",
    "quant* cadastro*", "quant* registro*", "quant* contato*", "quant* pessoa*",
    "quant* morador*", "quant* cidada*",
)

ANALYSIS_KEYWORDS: Tuple[str, ...] = (
    "analise", "analises", "analysis", "relatorio*", "report*",
    "estatistica*", "statistic*", "satisfacao", "satisfaction",
    "engajamento", "engagement", "bairro", "bairros", "neighborhood*",
    "resumo", "summary", "overview", "visao", "view",
    "problema", "problemas", "problem", "problems",
    "questao", "questoes", "question", "questions",
    "participacao", "participation", "idade", "idades", "age",
    "faixa etaria", "faixas etarias", "age bracket*",
)

DISPLAY_VERBS: Tuple[str, ...] = (
    "mostrar", "mostre", "mostra", "exibir", "exiba", "show", "display",
    "listar", "liste", "lista", "list", "trazer", "traga", "bring",
    "apresentar", "apresente", "present",
)

# A preposition right after an analysis keyword ("analise de satisfacao")
ANALYSIS_PREPOSITIONS = frozenset({"de", "do", "da", "dos", "das", "of", "por", "by", "per"})

# Sub-keywords that decide which analysis data-need tags are attached
SATISFACTION_SUBKEYS: Tuple[str, ...] = ("satisf*", "insatisf*", "dissatisf*")
GEOGRAPHIC_SUBKEYS: Tuple[str, ...] = ("bairro*", "neighborhood*", "geografi*", "geographic*", "equidade", "equity")
AGE_SUBKEYS: Tuple[str, ...] = ("idade*", "age", "ages", "faixa*", "etari*")
ISSUE_SUBKEYS: Tuple[str, ...] = ("problema*", "problem*", "questao", "questoes", "issue*", "preocupac*")
ENGAGEMENT_SUBKEYS: Tuple[str, ...] = ("engajamento", "engagement", "taxa de resposta", "response rate", "funil", "funnel")
PARTICIPATION_SUBKEYS: Tuple[str, ...] = ("participacao", "participation")

DISSATISFIED_TERMS: Tuple[str, ...] = (
    "insatisf*", "dissatisfied", "unsatisfied", "insatisfied", "unhappy",
)
SATISFIED_TERMS: Tuple[str, ...] = (
    "satisfeito", "satisfeitos", "satisfeita", "satisfeitas", "satisfied",
)
NOT_INTERESTED_TERMS: Tuple[str, ...] = (
    "nao querem participar", "nao quer participar", "nao participaria*",
    "nao participam", "nao interessad*", "not interested", "sem interesse",
    "dont want", "don't want",
)
INTERESTED_TERMS: Tuple[str, ...] = (
    "interessad*", "interested", "querem participar", "quer participar",
    "gostariam de participar",
)
PARTICIPATION_TERMS: Tuple[str, ...] = ("particip*",)
NEGATION_TERMS: Tuple[str, ...] = ("nao", "not", "sem interesse", "never", "nunca", "dont", "don't")
EVENT_TERMS: Tuple[str, ...] = ("evento*", "event*")

FILTER_VERBS: Tuple[str, ...] = (
    "encontrar", "encontre", "encontra", "find", "buscar", "busque",
    "listar", "liste", "lista", "list", "mostrar", "mostre", "show",
    "exibir", "exiba", "display", "trazer", "traga",
)

RESIDENT_NOUNS: Tuple[str, ...] = (
    "morador*", "resident*", "cidada*", "citizen*",
)

NAME_SEARCH_VERBS: Tuple[str, ...] = (
    "encontre", "encontrar", "encontra", "busque", "buscar", "busca",
    "find", "search", "procure", "procurar", "procura",
    "mostre", "mostrar", "mostra", "show", "exiba", "exibir",
    "traga", "trazer", "localize", "localizar", "quem e", "quem eh", "who is",
)

NAME_STOPWORDS = frozenset({
    "o", "a", "os", "as", "de", "do", "da", "dos", "das", "em", "no", "na",
    "the", "an", "me", "meu", "minha", "meus", "minhas", "um", "uma", "uns",
    "umas", "que", "qual", "quais", "e", "eh", "is", "for", "por", "para",
    "favor", "please", "com", "with", "todos", "todas", "all", "nome",
    "name", "chamado", "chamada", "named", "called", "who", "quem",
    "morador", "moradores", "moradora", "moradoras", "residente", "residentes",
    "resident", "residents", "cidadao", "cidadaos", "cidada", "cidadas",
    "citizen", "citizens", "pessoa", "pessoas", "person", "people",
})

LIST_VERBS: Tuple[str, ...] = (
    "list", "show", "names", "display", "listar", "liste", "lista",
    "mostre", "mostrar", "exibir", "exiba", "traga",
)

HEURISTIC_RESIDENT_NOUNS: Tuple[str, ...] = ("resident*", "citizen*", "residente*", "morador*", "cidada*")

ABANDONMENT_TERMS: Tuple[str, ...] = ("clicked", "clicou", "clicaram", "abandon*", "abandono")
ABANDONMENT_QUALIFIERS: Tuple[str, ...] = ("didnt", "didn't", "not", "nao", "survey", "pesquisa", "completaram", "complete*")

NOTIFICATION_TERMS: Tuple[str, ...] = (
    "send", "message", "messages", "notify", "notificar", "enviar",
    "mensagem", "mensagens", "contatar", "contact",
)
TICKET_TERMS: Tuple[str, ...] = (
    "system", "health", "status", "export", "sistema", "exportar",
    "duplicad*", "duplicate*",
)
URGENCY_TERMS: Tuple[str, ...] = (
    "urgente", "urgent", "urgencia", "urgency", "imediat*", "immediate*",
    "critico", "critica", "critical", "asap",
)

# Municipal-domain anchors used by the low-confidence safeguard
DOMAIN_ANCHOR_TERMS: Tuple[str, ...] = (
    "satisf*", "insatisf*", "dissatisf*", "engaj*", "engag*",
    "particip*", "bairro*", "neighborhood*", "equidade",
    "equity", "municip*", "cidada*", "citizen*", "governanca", "governance",
    "resposta*", "taxa*", "survey*", "pesquisa*", "residente*", "resident*",
    "morador*", "cadastro*", "registro*", "total", "quantos", "quantas",
    "contagem", "estatistica*", "problema*", "relatorio*", "analise*",
    "idade*", "faixa etaria",
)

COMPARISON_TERMS: Tuple[str, ...] = ("compar*", "versus", "vs", "entre os bairros", "between")

CONFIDENCE_SAFEGUARD_THRESHOLD = 0.65

CANONICAL_INTENT_MAP: Mapping[str, str] = MappingProxyType({
    "satisfaction": "knowledge",
    "engagement": "notification",
    "geographic": "knowledge",
    "operational": "ticket",
    "benchmarking": "knowledge",
    "survey": "knowledge",
})

# ---------------------------------------------------------------------------
# Issue remediation table (keys normalized with core.text.normalize)
# ---------------------------------------------------------------------------

_ISSUE_RECOMMENDATIONS: Mapping[str, str] = MappingProxyType({
    "seguranca": "Coordenação urgente com a segurança pública para implementar medidas de segurança aprimoradas. Organizar reuniões com comandantes locais e propor ações específicas.",
    "saude": "Revisar a capacidade e acessibilidade dos serviços de saúde. Verificar se há falta de médicos, medicamentos ou equipamentos nos postos de saúde.",
    "transporte": "Analisar as rotas e frequência do transporte público. Verificar se os horários atendem às necessidades dos cidadãos e se há pontos de ônibus em áreas necessitadas.",
    "educacao": "Avaliar a capacidade e qualidade das escolas municipais. Verificar se há falta de vagas, professores ou materiais escolares.",
    "emprego": "Desenvolver programas de geração de emprego e desenvolvimento econômico. Criar oportunidades de capacitação e parcerias com empresas locais.",
    "outros": "Analisar detalhadamente as respostas personalizadas dos cidadãos para identificar problemas específicos que precisam de atenção.",
})

_GENERIC_ISSUE_RECOMMENDATION = (
    "Investigar em detalhe as causas relatadas sobre {issue}: ouvir os cidadãos afetados "
    "e levantar com a secretaria responsável o que pode ser feito."
)


def issue_recommendation(issue: Optional[str]) -> str:
    """Canned remediation text for an issue, or the generic 'investigate' text."""
    label = (issue or "").strip() or "esta questão"
    return _ISSUE_RECOMMENDATIONS.get(normalize(label), _GENERIC_ISSUE_RECOMMENDATION.format(issue=label))
