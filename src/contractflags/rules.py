"""Deterministic regex rule engine for common contract red flags."""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from contractflags.documents import DocumentLocator
from contractflags.models import Category, Severity, Source
from contractflags.utils import sentence_excerpt

QUOTE_LIMIT = 240


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: str
    category: Category
    severity: Severity
    score: int
    title: str
    description: str
    recommendation: str

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)


DEFAULT_RULES = [
    # Liability
    Rule(
        name="unlimited_liability",
        pattern=r"\b(?:unlimited|uncapped)\s+liability\b|\bliable\s+for\s+(?:any\s+and\s+)?all\s+(?:damages|losses)\b",
        category=Category.LIABILITY,
        severity=Severity.CRITICAL,
        score=9,
        title="Unlimited Liability Clause",
        description="The clause exposes a party to liability with no cap on damages or losses.",
        recommendation="Negotiate a liability cap tied to the contract or transaction value.",
    ),
    Rule(
        name="broad_indemnity",
        pattern=r"\bindemnify\b[^.;]{0,80}?\b(?:any\s+and\s+all|all)\s+(?:claims|losses|damages|liabilities)\b",
        category=Category.LIABILITY,
        severity=Severity.HIGH,
        score=8,
        title="Broad Indemnification Obligation",
        description="The indemnity covers all claims or losses without limitation or carve-outs.",
        recommendation="Limit the indemnity to third-party claims caused by the indemnifying party and add a cap.",
    ),
    # Financial
    Rule(
        name="liquidated_damages",
        pattern=r"\bliquidated\s+damages\b",
        category=Category.FINANCIAL,
        severity=Severity.HIGH,
        score=7,
        title="Liquidated Damages Provision",
        description="A pre-agreed damages amount applies regardless of the actual loss suffered.",
        recommendation="Confirm the amount is a genuine pre-estimate of loss and is capped.",
    ),
    Rule(
        name="vague_accounting_standard",
        pattern=r"\bin\s+accordance\s+with\s+generally\s+accepted\s+principles\b",
        category=Category.FINANCIAL,
        severity=Severity.HIGH,
        score=8,
        title="Vague Revenue Recognition",
        description="Financial terms refer to unspecified accounting principles, inviting post-closing disputes.",
        recommendation="Define the specific accounting standard, methodology, and timing.",
    ),
    Rule(
        name="price_adjustment",
        pattern=r"\b(?:purchase\s+price|consideration)\s+(?:shall\s+|will\s+|may\s+)?(?:be\s+)?(?:subject\s+to\s+)?adjust(?:ed|ment)\b",
        category=Category.FINANCIAL,
        severity=Severity.MEDIUM,
        score=6,
        title="Open-Ended Price Adjustment",
        description="The consideration can be adjusted after signing.",
        recommendation="Specify the adjustment mechanism, caps, and dispute resolution for the calculation.",
    ),
    # Vague language
    Rule(
        name="material_adverse_effect",
        pattern=r"\bmaterial\s+adverse\s+(?:effect|change)\b",
        category=Category.VAGUE_LANGUAGE,
        severity=Severity.MEDIUM,
        score=6,
        title="Ambiguous Material Adverse Effect",
        description="The material adverse effect standard is broad and subjective.",
        recommendation="Narrow the definition to specific, measurable criteria with clear exclusions.",
    ),
    Rule(
        name="efforts_standard",
        pattern=r"\b(?:best|reasonable|commercially\s+reasonable)\s+efforts\b",
        category=Category.VAGUE_LANGUAGE,
        severity=Severity.LOW,
        score=3,
        title="Undefined Efforts Standard",
        description="An efforts obligation is used without defining what it requires.",
        recommendation="List the concrete actions the efforts standard requires or excludes.",
    ),
    Rule(
        name="sole_discretion",
        pattern=r"\bin\s+(?:its|their|his|her)\s+sole\s+(?:and\s+absolute\s+)?discretion\b",
        category=Category.VAGUE_LANGUAGE,
        severity=Severity.MEDIUM,
        score=5,
        title="Sole Discretion Right",
        description="One party may decide unilaterally without any reasonableness standard.",
        recommendation="Require decisions to be reasonable, in good faith, and not unreasonably withheld.",
    ),
    Rule(
        name="terms_to_be_agreed",
        pattern=r"\bto\s+be\s+(?:negotiated|agreed|determined)\b",
        category=Category.VAGUE_LANGUAGE,
        severity=Severity.MEDIUM,
        score=6,
        title="Open Terms To Be Agreed",
        description="Material terms are left to future negotiation.",
        recommendation="Settle the open terms before signing or add a fallback mechanism.",
    ),
    # Customer and commercial
    Rule(
        name="termination_for_convenience",
        pattern=r"\bterminate\b[^.;]{0,80}?\b(?:at\s+any\s+time|for\s+convenience|without\s+cause)\b",
        category=Category.CUSTOMER,
        severity=Severity.HIGH,
        score=7,
        title="Termination Without Cause",
        description="The counterparty may terminate at will, putting revenue at risk.",
        recommendation="Require notice periods, termination fees, or limit termination to material breach.",
    ),
    Rule(
        name="change_of_control",
        pattern=r"\bchange\s+(?:of|in)\s+control\b",
        category=Category.CUSTOMER,
        severity=Severity.HIGH,
        score=7,
        title="Change of Control Trigger",
        description="A change of control may allow the counterparty to terminate or renegotiate.",
        recommendation="Obtain counterparty consent or a waiver before closing.",
    ),
    Rule(
        name="exclusivity",
        pattern=r"\bexclusive\s+(?:supplier|provider|dealing|distributor)\b|\bmost[\s-]+favou?red\s+(?:customer|nation)\b",
        category=Category.CUSTOMER,
        severity=Severity.MEDIUM,
        score=5,
        title="Exclusivity or Most-Favoured Terms",
        description="Exclusivity or most-favoured pricing restricts future commercial freedom.",
        recommendation="Limit the scope, duration, and territory of the restriction.",
    ),
    Rule(
        name="automatic_renewal",
        pattern=r"\bautomatically\s+renew(?:s|ed)?\b",
        category=Category.CUSTOMER,
        severity=Severity.LOW,
        score=3,
        title="Automatic Renewal",
        description="The agreement renews automatically unless notice is given.",
        recommendation="Track the notice deadline or require affirmative renewal.",
    ),
    # Compliance
    Rule(
        name="regulatory_approval_waived",
        pattern=r"\b(?:regardless\s+of|without)\s+(?:any\s+|the\s+)?(?:regulatory|governmental|antitrust)\s+(?:approval|consent|clearance)s?\b",
        category=Category.COMPLIANCE,
        severity=Severity.HIGH,
        score=8,
        title="Missing Regulatory Approval Condition",
        description="Closing can proceed without the regulatory approvals required in key jurisdictions.",
        recommendation="Add explicit regulatory approval conditions and a timeline.",
    ),
    # Employee
    Rule(
        name="non_compete",
        pattern=r"\bnon[\s-]?compet(?:e|ition)\b",
        category=Category.EMPLOYEE,
        severity=Severity.MEDIUM,
        score=5,
        title="Non-Compete Restriction",
        description="A non-compete may be unenforceable or overly broad in some jurisdictions.",
        recommendation="Check enforceability and limit duration and geography.",
    ),
    Rule(
        name="key_employee_retention",
        pattern=r"\bkey\s+employees?\b[^.;]{0,80}?\b(?:retained|retention)\b",
        category=Category.EMPLOYEE,
        severity=Severity.MEDIUM,
        score=5,
        title="Key Employee Retention Undefined",
        description="Retention of key employees is referenced without concrete terms.",
        recommendation="Define retention packages, conditions, and consequences of departure.",
    ),
    # Intellectual property
    Rule(
        name="ip_transfer_qualified",
        pattern=r"\b(?:intellectual\s+property|IP)(?:\s+rights?)?\b[^.;]{0,80}?\bto\s+the\s+extent\s+(?:legally\s+)?permissible\b",
        category=Category.INTELLECTUAL_PROPERTY,
        severity=Severity.CRITICAL,
        score=9,
        title="IP Ownership Ambiguity",
        description="The transfer of intellectual property is qualified and may leave assets behind.",
        recommendation="Schedule the exact IP assets and the transfer mechanism for each.",
    ),
    # Tax
    Rule(
        name="tax_gross_up",
        pattern=r"\bgross(?:ed)?[\s-]+up\b",
        category=Category.TAX,
        severity=Severity.MEDIUM,
        score=5,
        title="Tax Gross-Up Obligation",
        description="A party must gross up payments for taxes, shifting tax cost.",
        recommendation="Limit the gross-up to withholding taxes and exclude taxes caused by the recipient.",
    ),
    Rule(
        name="pre_closing_taxes",
        pattern=r"\b(?:pre-closing|transfer)\s+taxes\b",
        category=Category.TAX,
        severity=Severity.MEDIUM,
        score=5,
        title="Tax Allocation",
        description="Responsibility for pre-closing or transfer taxes needs confirmation.",
        recommendation="Allocate pre-closing and transfer taxes explicitly and back them with an indemnity.",
    ),
    # Jurisdiction
    Rule(
        name="exclusive_jurisdiction",
        pattern=r"\bexclusive\s+jurisdiction\b",
        category=Category.JURISDICTION,
        severity=Severity.MEDIUM,
        score=4,
        title="Exclusive Jurisdiction",
        description="Disputes must be brought in a specified forum.",
        recommendation="Confirm the forum is acceptable and consider arbitration.",
    ),
    Rule(
        name="jury_waiver",
        pattern=r"\bwaive[sd]?\b[^.;]{0,40}?\bjury\s+trial\b",
        category=Category.JURISDICTION,
        severity=Severity.MEDIUM,
        score=5,
        title="Jury Trial Waiver",
        description="The parties waive their right to a jury trial.",
        recommendation="Confirm the waiver is intended and enforceable under the governing law.",
    ),
]


def _compile_rules(rules: Iterable[Rule]) -> list[tuple[Rule, re.Pattern[str]]]:
    unique = list({rule.name: rule for rule in rules}.values())
    return [(rule, rule.compile()) for rule in unique]


def scan(text: str, rules: Sequence[Rule] | None = None) -> list[dict]:
    """Return raw findings for every rule match in ``text``.

    Each rule yields at most one finding per location; findings are ordered by
    position in the document, then by rule order.
    """

    compiled = _compile_rules(rules if rules is not None else DEFAULT_RULES)
    locator = DocumentLocator(text)

    matches = []
    for rule_index, (rule, pattern) in enumerate(compiled):
        for match in pattern.finditer(text):
            matches.append((match.start(), rule_index, rule, match))
    matches.sort(key=lambda item: (item[0], item[1]))

    findings: list[dict] = []
    seen: set[tuple[str, str]] = set()
    for start, _, rule, match in matches:
        location = locator.locate(start)
        if (rule.name, location) in seen:
            continue
        seen.add((rule.name, location))
        findings.append(
            {
                "rule": rule.name,
                "category": rule.category.value,
                "severity": rule.severity.value,
                "title": rule.title,
                "description": rule.description,
                "quote": sentence_excerpt(text, start, match.end(), limit=QUOTE_LIMIT),
                "location": location,
                "score": rule.score,
                "recommendation": rule.recommendation,
            }
        )

    return findings


class RuleEngineAnalyzer:
    """Runs the regex rule pack in a worker thread."""

    source = Source.RULE_ENGINE

    def __init__(self, rules: Sequence[Rule] | None = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    async def analyze(self, text: str, config=None) -> list[dict]:
        return await asyncio.to_thread(scan, text, self.rules)
