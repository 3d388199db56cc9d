"""
ブラウザ内スクリプト — execute_script() に渡す JavaScript 関数式

ネイティブ操作が失敗した場合のフォールバックや、ネイティブ API では
取得できない状態（遮蔽・フォーム検証メッセージ等）の確認に使用する。
各スクリプトは引数（要素ハンドル等）を受け取る関数式として記述する。
"""

DOCUMENT_READY = "() => document.readyState === 'complete'"

SCROLL_INTO_VIEW = "el => el.scrollIntoView({block: 'center', inline: 'nearest'})"

CLICK = "el => el.click()"

# 値を直接代入し、フレームワークが購読する input / change イベントを発火する
SET_VALUE = """(el, value) => {
  el.focus();
  el.value = value;
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
}"""

INNER_TEXT = "el => (el.innerText || el.textContent || '')"

# 要素中心の最前面要素が自身（または子孫）であれば遮蔽なしと判定する。
# 中心がビューポート外の場合はスクロール前のため判定しない（遮蔽なし扱い）。
IS_UNOBSCURED = """el => {
  const r = el.getBoundingClientRect();
  const x = r.left + r.width / 2;
  const y = r.top + r.height / 2;
  if (x < 0 || y < 0 || x >= window.innerWidth || y >= window.innerHeight) {
    return true;
  }
  const top = document.elementFromPoint(x, y);
  return top !== null && (top === el || el.contains(top));
}"""

OPTION_LABELS = """el => Array.from(el.options || el.querySelectorAll('option'))
  .map(o => (o.textContent || '').trim())"""

CHECK_VALIDITY = "el => el.checkValidity()"

VALIDATION_MESSAGE = "el => el.validationMessage || ''"

CLOSEST_GROUP_HTML = """el => {
  const group = el.closest('.form-group') || el.parentElement;
  return group ? group.innerHTML : '';
}"""

# ズーム率（%）。body の CSS zoom で表現し、未設定は 100 とみなす
GET_ZOOM = "() => parseFloat(document.body.style.zoom || '100')"

SET_ZOOM = "(percent) => { document.body.style.zoom = percent + '%'; }"
