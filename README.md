# sketchmap

Pure-Python support code used around minimizer-sketch sequence mapping. It has
an order-preserving worker pool, a hash-table sizing policy, C-style number
parsing and a reader for DWARF debug information.

## Modules

- `sketchmap.threadpool`: `OrderedThreadPool(function, thread_count)` runs
  `function` on worker threads.
  - `submit(item)` blocks until a worker has taken the previous item.
  - `pop_output()` waits for the oldest result and returns it. If the call for
    that item raised, it raises the same exception. It raises `LookupError` when
    nothing is queued.
  - `output_available()` and `running()` report the state of the queue.
  - `close()` stops the workers. The pool also works as a context manager.
- `sketchmap.hashtable_settings`: `HashtableSettings` holds the enlarge and
  shrink factors and thresholds of an open-addressing hash table.
  - `enlarge_size` and `shrink_size` give the element counts for a bucket count.
  - `reset_thresholds` recomputes both thresholds.
  - `set_resizing_parameters` sets the factors and caps shrink at half of grow.
  - `min_buckets` returns the smallest power-of-two bucket count that is not too
    crowded. It raises `OverflowError` past the size limit.
  - `read_bigendian(stream, length)` and `write_bigendian(stream, value, length, width)`
    read and write unsigned big-endian integers on a binary stream.
- `sketchmap.numparse`: `parse_int_prefix`, `parse_uint_prefix` and
  `parse_float_prefix` parse a leading number the way the C `strto*` functions
  do. Each returns the value and the rest of the text.
  - Integers saturate at 64 bits and are then wrapped to 32 or 64 bits.
  - `uint_mask(bits, width)` builds a low-bit mask.
  - `double_to_int` truncates after a nudge of 16 machine epsilons.
- `sketchmap.dwarf`: a reader for DWARF versions 2 to 4.
  - `buffer`: `DwarfBuffer` is a bounds-checked cursor with fixed-width, LEB128
    and C-string readers. `read_attribute` decodes one attribute value, and
    `is_highest_address` tests for an all-ones address.
  - `units`: `read_abbrevs` and `AbbrevTable` handle abbreviation tables.
    `build_address_map` maps PC ranges (`UnitRange`) to compilation units
    (`Unit`).
  - `lines`: `read_line_header`, `read_line_program` and `read_line_info` decode
    the `.debug_line` tables into `LineHeader` and sorted `LineEntry` lists.
  - `lookup`: `DwarfData` takes the raw sections of one module:
    `base_address, info, line, abbrev, ranges, strs, is_bigendian`. Its
    `lookup(pc)` returns a list of `Frame`s, innermost inlined call first, or
    `None` when no unit covers `pc`. `read_function_info` and
    `read_referenced_name` are the helpers it uses.

Malformed DWARF data raises `DwarfError`. The other modules raise built-in
exceptions.

## Example

```python
from sketchmap.threadpool import OrderedThreadPool

pool = OrderedThreadPool(lambda n: n * n, 4)
for n in range(10):
    pool.submit(n)

results = []
while pool.running():
    results.append(pool.pop_output())
pool.close()

assert results == [n * n for n in range(10)]
```

## What this package does not do

The package has no command-line program. It does not read FASTA files, compute
minimizer sketches or map sequences. It has no records for minimizers, contigs
or mapping results. The DWARF reader works on section bytes you supply: it does
not open or parse ELF or other executable files.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```