# oplog/grammar.py
"""
PEG grammar of the operation-log text format (parsimonious syntax).

One statement per line, or several separated by ``;``.  ``#`` starts a
comment.  Keywords are matched before names, so a statement keyword can
never be mistaken for a binding.
"""

from parsimonious.grammar import Grammar

OPLOG_GRAMMAR = r'''
    # ─────────────────────────────────────────────────────────────
    # Top-level structure
    # ─────────────────────────────────────────────────────────────
    log             = line*
    line            = hs statement? hs comment? eol
    eol             = ~r"\r?\n" / ";"
    comment         = ~r"#[^\r\n]*"
    hs              = ~r"[ \t]*"
    ws1             = ~r"[ \t]+"

    statement       = enter / exit / declare / allocate / grow / move
                    / copy / borrow / reborrow / end_borrow / read / write
                    / drop

    # ─────────────────────────────────────────────────────────────
    # Scopes
    # ─────────────────────────────────────────────────────────────
    enter           = "enter" label?
    exit            = "exit" label?
    label           = ws1 name

    # ─────────────────────────────────────────────────────────────
    # Values
    # ─────────────────────────────────────────────────────────────
    declare         = declare_kw ws1 name ws1 value_kind options
    declare_kw      = "declare" / "let"
    value_kind      = "scalar" / "box" / "heap" / "ref"
    allocate        = "allocate" options
    grow            = "grow" ws1 target options
    move            = "move" ws1 name hs arrow hs name
    copy            = "copy" ws1 name hs arrow hs name
    read            = "read" ws1 name
    write           = "write" ws1 name options
    drop            = "drop" ws1 name

    # ─────────────────────────────────────────────────────────────
    # Borrows
    # ─────────────────────────────────────────────────────────────
    borrow          = "borrow" mut? ws1 name hs arrow hs name
    mut             = ws1 "mut" &ws1
    reborrow        = "reborrow" ws1 name hs arrow hs name
    end_borrow      = end_kw ws1 name
    end_kw          = "endborrow" / "end"

    # ─────────────────────────────────────────────────────────────
    # Options and atoms
    # ─────────────────────────────────────────────────────────────
    options         = option*
    option          = ws1 option_body
    option_body     = kv_option / flag
    kv_option       = key "=" value
    key             = "len" / "cap" / "size" / "value" / "adopt"
    flag            = "uninit"
    value           = address / integer
    target          = address / name
    address         = "@" integer
    integer         = ~r"-?[0-9]+"
    arrow           = "->"
    name            = ~r"[A-Za-z_][A-Za-z0-9_]*"
'''

GRAMMAR = Grammar(OPLOG_GRAMMAR)
