# src/pr_review_engine/structure_extractor.py
import importlib
import logging
import re
from typing import Dict, Iterator, List, Optional, Tuple, Union

from tree_sitter import Language, Node, Parser

from .errors import AstParseError
from .models import AstFileContext, AstImport, AstScope, ScopeType, SupportedLanguage
from .results import Result, err, ok

logger = logging.getLogger(__name__)

ANONYMOUS_SCOPE_NAME = "<anonymous>"
UNKNOWN_IMPORT_SOURCE = "<unknown>"

# Grammar module and the factory that returns its language pointer.
GRAMMAR_MODULES: Dict[SupportedLanguage, Tuple[str, str]] = {
    SupportedLanguage.TYPESCRIPT: ("tree_sitter_typescript", "language_tsx"),
    SupportedLanguage.JAVASCRIPT: ("tree_sitter_javascript", "language"),
    SupportedLanguage.PYTHON: ("tree_sitter_python", "language"),
    SupportedLanguage.GO: ("tree_sitter_go", "language"),
    SupportedLanguage.RUST: ("tree_sitter_rust", "language"),
    SupportedLanguage.JAVA: ("tree_sitter_java", "language"),
}

_JS_SCOPE_NODES = {
    "function_declaration": ScopeType.FUNCTION,
    "generator_function_declaration": ScopeType.FUNCTION,
    "method_definition": ScopeType.METHOD,
    "class_declaration": ScopeType.CLASS,
    "arrow_function": ScopeType.FUNCTION,
    "function_expression": ScopeType.FUNCTION,
}

SCOPE_NODE_TYPES: Dict[SupportedLanguage, Dict[str, ScopeType]] = {
    SupportedLanguage.TYPESCRIPT: dict(_JS_SCOPE_NODES, abstract_class_declaration=ScopeType.CLASS),
    SupportedLanguage.JAVASCRIPT: _JS_SCOPE_NODES,
    SupportedLanguage.PYTHON: {
        "function_definition": ScopeType.FUNCTION,
        "class_definition": ScopeType.CLASS,
    },
    SupportedLanguage.GO: {
        "function_declaration": ScopeType.FUNCTION,
        "method_declaration": ScopeType.METHOD,
    },
    SupportedLanguage.RUST: {
        "function_item": ScopeType.FUNCTION,
        "impl_item": ScopeType.CLASS,
    },
    SupportedLanguage.JAVA: {
        "class_declaration": ScopeType.CLASS,
        "method_declaration": ScopeType.METHOD,
        "constructor_declaration": ScopeType.METHOD,
    },
}

IMPORT_NODE_TYPES: Dict[SupportedLanguage, Tuple[str, ...]] = {
    SupportedLanguage.TYPESCRIPT: ("import_statement",),
    SupportedLanguage.JAVASCRIPT: ("import_statement",),
    SupportedLanguage.PYTHON: ("import_statement", "import_from_statement"),
    SupportedLanguage.GO: ("import_declaration",),
    SupportedLanguage.RUST: ("use_declaration",),
    SupportedLanguage.JAVA: ("import_declaration",),
}

_JS_FAMILY = (SupportedLanguage.TYPESCRIPT, SupportedLanguage.JAVASCRIPT)

# Parent node type -> field holding the name an anonymous function is bound to.
_BINDING_NAME_FIELDS = {
    "variable_declarator": "name",
    "pair": "key",
    "public_field_definition": "name",
    "field_definition": "property",
}

_GENERIC_IMPORT_KEYWORD_RE = re.compile(r"^(?:import|use)\s+")


class StructureExtractor:
    """
    Extracts enclosing scopes and imports from source files with tree-sitter.

    Grammars are imported lazily and cached per language, so an unused or
    missing grammar package only affects files written in that language.
    """

    def __init__(self):
        self._parser: Optional[Parser] = None
        # None records a grammar that failed to load.
        self._languages: Dict[SupportedLanguage, Optional[Language]] = {}

    @property
    def is_initialized(self) -> bool:
        return self._parser is not None

    def initialize(self) -> Result:
        """Creates the parser backend. Safe to call more than once."""
        if self._parser is not None:
            return ok()
        try:
            self._parser = Parser()
        except Exception as e:
            logger.error(f"Failed to initialize tree-sitter parser: {e}", exc_info=True)
            return err(AstParseError.INIT_FAILED)
        logger.debug("tree-sitter parser initialized.")
        return ok()

    def extract_structure(
        self,
        source: str,
        language: Union[SupportedLanguage, str],
        file_path: str
    ) -> Result:
        """
        Parses `source` and returns an AstFileContext with its scopes and imports.

        Fails with INIT_FAILED when the backend cannot be started,
        LANGUAGE_NOT_SUPPORTED for languages without a loadable grammar and
        PARSE_FAILED when the backend errors. Never raises.
        """
        init_result = self.initialize()
        if not init_result.success:
            return init_result

        try:
            language = SupportedLanguage(language)
        except ValueError:
            logger.debug(f"No grammar for language '{language}' ({file_path}).")
            return err(AstParseError.LANGUAGE_NOT_SUPPORTED)

        ts_language = self._load_language(language)
        if ts_language is None:
            return err(AstParseError.LANGUAGE_NOT_SUPPORTED)

        try:
            self._parser.language = ts_language
            tree = self._parser.parse(source.encode("utf-8"))
            root = tree.root_node
            scopes = extract_scopes(root, language)
            imports = extract_imports(root, language)
        except Exception as e:
            logger.warning(f"tree-sitter failed to parse {file_path}: {e}")
            return err(AstParseError.PARSE_FAILED)

        logger.debug(f"Extracted {len(scopes)} scopes and {len(imports)} imports from {file_path}.")
        return ok(AstFileContext(
            file_path=file_path,
            language=language,
            scopes=tuple(scopes),
            imports=tuple(imports),
        ))

    def _load_language(self, language: SupportedLanguage) -> Optional[Language]:
        if language in self._languages:
            return self._languages[language]

        module_name, factory_name = GRAMMAR_MODULES[language]
        try:
            module = importlib.import_module(module_name)
            loaded = Language(getattr(module, factory_name)())
        except (ImportError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Could not load tree-sitter grammar {module_name}: {e}")
            self._languages[language] = None
            return None

        self._languages[language] = loaded
        return loaded


def _walk(root: Node) -> Iterator[Node]:
    """Pre-order traversal over named nodes, yielding in document order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.named_children))


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def extract_scopes(root: Node, language: SupportedLanguage) -> List[AstScope]:
    scope_types = SCOPE_NODE_TYPES.get(language, {})
    scopes = []
    for node in _walk(root):
        scope_type = scope_types.get(node.type)
        if scope_type is None:
            continue
        scopes.append(AstScope(
            name=resolve_scope_name(node, language),
            type=scope_type,
            start_line=node.start_point[0] + 1,
            end_line=node.end_point[0] + 1,
        ))
    return scopes


def resolve_scope_name(node: Node, language: SupportedLanguage) -> str:
    name_node = node.child_by_field_name("name")
    if name_node is not None:
        return _text(name_node)

    if language in _JS_FAMILY and node.type in ("arrow_function", "function_expression"):
        parent = node.parent
        field_name = _BINDING_NAME_FIELDS.get(parent.type) if parent is not None else None
        if field_name:
            binding = parent.child_by_field_name(field_name)
            if binding is not None:
                return _text(binding)

    if language == SupportedLanguage.RUST and node.type == "impl_item":
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            return _text(type_node)

    return ANONYMOUS_SCOPE_NAME


def extract_imports(root: Node, language: SupportedLanguage) -> List[AstImport]:
    import_types = IMPORT_NODE_TYPES.get(language, ())
    imports = []
    for node in _walk(root):
        if node.type not in import_types:
            continue
        if language in _JS_FAMILY:
            parsed = _parse_js_import(node)
        elif language == SupportedLanguage.PYTHON:
            parsed = _parse_python_import(node)
        else:
            parsed = _parse_generic_import(node)
        if parsed is not None:
            imports.append(parsed)
    return imports


def _parse_js_import(node: Node) -> Optional[AstImport]:
    source_node = node.child_by_field_name("source")
    if source_node is None:
        return None
    source = _text(source_node).strip("'\"`")

    specifiers = []
    is_default = False
    for child in node.named_children:
        if child.type != "import_clause":
            continue
        for clause_part in child.named_children:
            if clause_part.type == "identifier":
                specifiers.append(_text(clause_part))
                is_default = True
            elif clause_part.type == "named_imports":
                for specifier in clause_part.named_children:
                    if specifier.type != "import_specifier":
                        continue
                    name_node = specifier.child_by_field_name("name")
                    if name_node is not None:
                        specifiers.append(_text(name_node))
            elif clause_part.type == "namespace_import":
                for part in clause_part.named_children:
                    if part.type == "identifier":
                        specifiers.append(f"* as {_text(part)}")

    return AstImport(source=source, specifiers=tuple(specifiers), is_default=is_default)


def _imported_name(node: Node) -> str:
    if node.type == "aliased_import":
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            return _text(name_node)
    return _text(node)


def _parse_python_import(node: Node) -> Optional[AstImport]:
    names = [_imported_name(child) for child in node.children_by_field_name("name")]

    if node.type == "import_from_statement":
        module_node = node.child_by_field_name("module_name")
        source = _text(module_node) if module_node is not None else UNKNOWN_IMPORT_SOURCE
        if any(child.type == "wildcard_import" for child in node.named_children):
            names.append("*")
        return AstImport(source=source, specifiers=tuple(names), is_default=False)

    # import a.b, c as d
    if not names:
        return None
    return AstImport(source=names[0], specifiers=tuple(names), is_default=True)


def _parse_generic_import(node: Node) -> Optional[AstImport]:
    text = _GENERIC_IMPORT_KEYWORD_RE.sub("", _text(node).strip()).rstrip(";").strip()
    if not text:
        return None
    return AstImport(source=text)
