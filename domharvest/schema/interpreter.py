"""The in-page interpreter for compiled schemas.

``INTERPRETER`` is passed to ``page.eval_on_selector_all`` together with a
compiled payload. It walks the payload's node tree for every matched root
element and returns one record per element.

Callback sources in ``payload.callbacks`` are turned into a procedure table
once per evaluation; ``callback`` nodes dispatch through it by reference.
Lookups always start from the current element, never from ``document``.
"""

from __future__ import annotations

INTERPRETER = """
(elements, payload) => {
  const procedures = {};
  for (const [ref, source] of Object.entries(payload.callbacks)) {
    procedures[ref] = new Function(`return (\\n${source}\\n);`)();
  }

  const resolve = (element, selector) =>
    selector ? element.querySelector(selector) : element;

  const run = (element, node) => {
    switch (node.kind) {
      case 'text': {
        const target = resolve(element, node.selector);
        const value = target ? target.textContent : null;
        if (value === null || value === undefined) {
          return node.default;
        }
        return node.trim ? value.trim() : value;
      }
      case 'attr': {
        const target = resolve(element, node.selector);
        const value = target ? target.getAttribute(node.attribute) : null;
        return value === null ? node.default : value;
      }
      case 'html': {
        const target = resolve(element, node.selector);
        const value = target ? target.innerHTML : null;
        return value === null || value === undefined ? node.default : value;
      }
      case 'exists':
        return resolve(element, node.selector) !== null;
      case 'count':
        return element.querySelectorAll(node.selector).length;
      case 'array':
        return Array.from(element.querySelectorAll(node.selector), (match) => run(match, node.item));
      case 'object': {
        const record = {};
        for (const [key, child] of node.fields) {
          Object.defineProperty(record, key, {
            value: run(element, child),
            enumerable: true,
            writable: true,
            configurable: true,
          });
        }
        return record;
      }
      case 'callback':
        return procedures[node.ref](element);
      case 'value':
        return node.value;
      default:
        throw new Error(`Unknown node kind: ${node.kind}`);
    }
  };

  return elements.map((element) => run(element, payload.root));
}
"""
